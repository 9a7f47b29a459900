"""Collects and prints the results of table checks."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class CheckResult(str, enum.Enum):
    """Overall result of a check run."""

    PASSED = "pass"
    FAILED = "fail"
    PASS = PASSED
    FAIL = FAILED


@dataclass
class TableResult:
    """Check result of one table."""

    schema: str = ""
    table: str = ""
    struct_equal: bool = False
    data_equal: bool = False
    meet_error: BaseException | None = None


@dataclass
class Report:
    """Check results of all tables."""

    result: CheckResult = CheckResult.PASSED
    pass_num: int = 0
    failed_num: int = 0
    table_results: dict[str, dict[str, TableResult]] = field(default_factory=dict)
    _lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )

    def _entry(self, schema: str, table: str) -> TableResult:
        tables = self.table_results.setdefault(schema, {})
        entry = tables.get(table)
        if entry is None:
            entry = tables[table] = TableResult(schema=schema, table=table)
        return entry

    def print(self) -> None:
        """Log a summary and the result of every table."""
        with self._lock:
            logger.info(
                "check result summary: check passed num=%d, check failed num=%d",
                self.pass_num,
                self.failed_num,
            )
            for schema, tables in self.table_results.items():
                for table, result in tables.items():
                    if result.meet_error is not None:
                        logger.error(
                            "table check result: schema=%s table=%s meet error=%s",
                            schema,
                            table,
                            result.meet_error,
                        )
                    else:
                        logger.info(
                            "table check result: schema=%s table=%s "
                            "struct equal=%s data equal=%s",
                            schema,
                            table,
                            result.struct_equal,
                            result.data_equal,
                        )

    def set_table_struct_check_result(
        self, schema: str, table: str, equal: bool
    ) -> None:
        """Record whether the table structures are equal."""
        with self._lock:
            self._entry(schema, table).struct_equal = equal
            if not equal:
                self.result = CheckResult.FAILED

    def set_table_data_check_result(self, schema: str, table: str, equal: bool) -> None:
        """Record whether the table data are equal."""
        with self._lock:
            self._entry(schema, table).data_equal = equal
            if not equal:
                self.result = CheckResult.FAILED

    def set_table_meet_error(
        self, schema: str, table: str, err: BaseException
    ) -> None:
        """Record an error met while checking the table."""
        with self._lock:
            self._entry(schema, table).meet_error = err
            self.result = CheckResult.FAILED