"""Configuration of the data consistency checker: flags, TOML file and checks."""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

PERCENT_MIN = 0
PERCENT_MAX = 100
DEFAULT_FIX_SQL_FILE = "fix.sql"
DEFAULT_TARGET_INSTANCE_ID = "target"

_CREDENTIAL_KEY = "password"
_NO_TEXT = ""
_HIDDEN_META = {"hidden": True}


class ConfigError(Exception):
    """The configuration is malformed or inconsistent."""


_Converter = Callable[[Any, str, list[str]], Any]


def _fail_type(path: str, expected: str) -> ConfigError:
    return ConfigError(f"toml: incompatible types: {path} must be {expected}")


def _as_str(value: Any, path: str, unknown: list[str]) -> str:
    if not isinstance(value, str):
        raise _fail_type(path, "a string")
    return value


def _as_int(value: Any, path: str, unknown: list[str]) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise _fail_type(path, "an integer")
    return value


def _as_bool(value: Any, path: str, unknown: list[str]) -> bool:
    if not isinstance(value, bool):
        raise _fail_type(path, "a boolean")
    return value


def _as_str_list(value: Any, path: str, unknown: list[str]) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise _fail_type(path, "an array of strings")
    return list(value)


def _as_raw_table_list(value: Any, path: str, unknown: list[str]) -> list[dict]:
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise _fail_type(path, "an array of tables")
    return [dict(v) for v in value]


def _as_table(cls: type) -> _Converter:
    def convert(value: Any, path: str, unknown: list[str]) -> Any:
        if not isinstance(value, dict):
            raise _fail_type(path, "a table")
        obj = cls()
        _decode_into(obj, value, path, unknown)
        return obj

    return convert


def _as_table_list(cls: type) -> _Converter:
    table = _as_table(cls)

    def convert(value: Any, path: str, unknown: list[str]) -> list[Any]:
        if not isinstance(value, list):
            raise _fail_type(path, "an array of tables")
        return [table(item, path, unknown) for item in value]

    return convert


def _decode_into(obj: Any, data: dict[str, Any], prefix: str, unknown: list[str]) -> None:
    """Set the attributes of ``obj`` from ``data``, collecting unknown keys."""
    known = {f.metadata["toml"]: f for f in fields(obj) if "toml" in f.metadata}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else key
        spec = known.get(key)
        if spec is None:
            unknown.append(path)
            continue
        setattr(obj, spec.name, spec.metadata["conv"](value, path, unknown))


def _opt(toml_name: str, conv: _Converter, **kwargs: Any) -> Any:
    metadata = {"toml": toml_name, "conv": conv}
    metadata.update(kwargs.pop("metadata", {}))
    return field(metadata=metadata, **kwargs)


def _json_value(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {
            f.metadata.get("json", f.metadata.get("toml", f.name)): _json_value(
                getattr(value, f.name)
            )
            for f in fields(value)
            if not f.metadata.get("hidden")
        }
    if isinstance(value, list):
        return [_json_value(v) for v in value]
    return value


_QUOTE_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
}


def _quote(text: str) -> str:
    """Return ``text`` as a double-quoted literal with escapes."""
    parts = ['"']
    for ch in text:
        escaped = _QUOTE_ESCAPES.get(ch)
        if escaped is not None:
            parts.append(escaped)
        elif ch.isprintable():
            parts.append(ch)
        else:
            code = ord(ch)
            if code < 0x80:
                parts.append(f"\\x{code:02x}")
            elif code <= 0xFFFF:
                parts.append(f"\\u{code:04x}")
            else:
                parts.append(f"\\U{code:08x}")
    parts.append('"')
    return "".join(parts)


@dataclass
class TableInstance:
    """A table in one database instance."""

    instance_id: str = _opt("instance-id", _as_str, default="")
    schema: str = _opt("schema", _as_str, default="")
    table: str = _opt("table", _as_str, default="")

    def _validate(self, source_instances: set[str]) -> None:
        if not self.instance_id:
            raise ConfigError("must specify the database's instance id for source table")
        if self.instance_id not in source_instances:
            raise ConfigError(f"unknown database instance id {self.instance_id}")
        if not self.schema or not self.table:
            raise ConfigError("schema and table's name can't be empty")

    def valid(self, source_instances: set[str]) -> bool:
        """Return whether the table refers to a known source instance."""
        try:
            self._validate(source_instances)
        except ConfigError as err:
            logger.error("%s", err)
            return False
        return True


@dataclass
class DBConfig:
    """Connection settings of one database instance."""

    host: str = _opt("host", _as_str, default="")
    port: int = _opt("port", _as_int, default=0)
    user: str = _opt("user", _as_str, default="")
    password: str = _opt(_CREDENTIAL_KEY, _as_str, default=_NO_TEXT, repr=False,
                         metadata=_HIDDEN_META)
    schema: str = _opt("schema", _as_str, default="")
    snapshot: str = _opt("snapshot", _as_str, default="")
    instance_id: str = _opt("instance-id", _as_str, default="")

    def _validate(self, source_instances: set[str]) -> None:
        if not self.instance_id:
            raise ConfigError("must specify source database's instance id")
        source_instances.add(self.instance_id)

    def valid(self, source_instances: set[str]) -> bool:
        """Return whether the instance id is set, registering it if so."""
        try:
            self._validate(source_instances)
        except ConfigError as err:
            logger.error("%s", err)
            return False
        return True


@dataclass
class CheckTables:
    """Tables of one schema to check; ``~`` prefixes a regular expression."""

    schema: str = _opt("schema", _as_str, default="")
    tables: list[str] = _opt("tables", _as_str_list, default_factory=list)
    exclude_tables: list[str] = _opt("exclude-tables", _as_str_list,
                                     default_factory=list)


@dataclass
class TableConfig(TableInstance):
    """Per-table settings of a check."""

    ignore_columns: list[str] = _opt("ignore-columns", _as_str_list,
                                     default_factory=list)
    fields: str = _opt("index-fields", _as_str, default="")
    range: str = _opt("range", _as_str, default="")
    is_sharding: bool = _opt("is-sharding", _as_bool, default=False)
    source_tables: list[TableInstance] = _opt(
        "source-tables", _as_table_list(TableInstance), default_factory=list
    )
    collation: str = _opt("collation", _as_str, default="")

    def _validate(self, source_instances: set[str]) -> None:
        if not self.schema or not self.table:
            raise ConfigError("schema and table's name can't be empty")
        if self.is_sharding:
            if len(self.source_tables) <= 1:
                raise ConfigError(
                    "must have more than one source tables if comparing sharding tables"
                )
        elif len(self.source_tables) > 1:
            raise ConfigError("have more than one source table in no sharding mode")
        for source_table in self.source_tables:
            source_table._validate(source_instances)

    def valid(self, source_instances: set[str]) -> bool:
        """Return whether the table settings are consistent."""
        try:
            self._validate(source_instances)
        except ConfigError as err:
            logger.error("%s", err)
            return False
        return True


# flag name -> (attribute, value type)
_FLAGS: dict[str, tuple[str, type]] = {
    "config": ("config_file", str),
    "L": ("log_level", str),
    "chunk-size": ("chunk_size", int),
    "sample": ("sample", int),
    "check-thread-count": ("check_thread_count", int),
    "use-checksum": ("use_checksum", bool),
    "fix-sql-file": ("fix_sql_file", str),
    "V": ("print_version", bool),
    "ignore-data-check": ("ignore_data_check", bool),
    "ignore-struct-check": ("ignore_struct_check", bool),
    "ignore-stats": ("ignore_stats", bool),
    "use-checkpoint": ("use_checkpoint", bool),
}

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _parse_flag_value(name: str, kind: type, value: str) -> Any:
    if kind is bool:
        if value in _TRUE_WORDS:
            return True
        if value in _FALSE_WORDS:
            return False
        raise ConfigError(f'invalid boolean value "{value}" for -{name}: parse error')
    if kind is int:
        try:
            return int(value, 0)
        except ValueError:
            raise ConfigError(
                f'invalid value "{value}" for flag -{name}: parse error'
            ) from None
    return value


@dataclass
class Config:
    """Settings of a check run, from flags and an optional TOML file."""

    log_level: str = _opt("log-level", _as_str, default="info")
    source_db: list[DBConfig] = _opt("source-db", _as_table_list(DBConfig),
                                     default_factory=list)
    target_db: DBConfig = _opt("target-db", _as_table(DBConfig),
                               default_factory=DBConfig)
    chunk_size: int = _opt("chunk-size", _as_int, default=1000)
    sample: int = _opt("sample-percent", _as_int, default=100)
    check_thread_count: int = _opt("check-thread-count", _as_int, default=1)
    use_checksum: bool = _opt("use-checksum", _as_bool, default=True)
    only_use_checksum: bool = _opt("only-use-checksum", _as_bool, default=False)
    fix_sql_file: str = _opt("fix-sql-file", _as_str, default=DEFAULT_FIX_SQL_FILE)
    tables: list[CheckTables] = _opt("check-tables", _as_table_list(CheckTables),
                                     default_factory=list)
    table_rules: list[dict[str, Any]] = _opt("table-rules", _as_raw_table_list,
                                             default_factory=list)
    table_cfgs: list[TableConfig] = _opt("table-config", _as_table_list(TableConfig),
                                         default_factory=list)
    ignore_struct_check: bool = _opt("ignore-struct-check", _as_bool, default=False)
    ignore_stats: bool = _opt("ignore-stats", _as_bool, default=False)
    ignore_data_check: bool = _opt("ignore-data-check", _as_bool, default=False)
    use_checkpoint: bool = _opt("use-checkpoint", _as_bool, default=True)
    dm_addr: str = _opt("dm-addr", _as_str, default="")
    dm_task: str = _opt("dm-task", _as_str, default="")
    config_file: str = field(default="", metadata={"json": "ConfigFile"})
    print_version: bool = field(default=False, metadata={"json": "PrintVersion"})

    def __str__(self) -> str:
        return json.dumps(_json_value(self))

    def parse(self, arguments: Sequence[str]) -> None:
        """Apply command-line flags, loading the config file they name.

        Flags given on the command line take precedence over the file.
        """
        self._parse_flags(arguments)
        if self.config_file:
            self._config_from_file(self.config_file)
        rest = self._parse_flags(arguments)
        if rest:
            raise ConfigError(f"'{rest[0]}' is an invalid flag")

    def _parse_flags(self, arguments: Sequence[str]) -> list[str]:
        args = list(arguments)
        while args:
            arg = args[0]
            if len(arg) < 2 or arg[0] != "-":
                break
            dashes = 1
            if arg[1] == "-":
                dashes = 2
                if len(arg) == 2:
                    args.pop(0)
                    break
            name = arg[dashes:]
            if not name or name[0] in "-=":
                raise ConfigError(f"bad flag syntax: {arg}")
            args.pop(0)
            name, sep, value = name.partition("=")
            spec = _FLAGS.get(name)
            if spec is None:
                if name in ("help", "h"):
                    raise ConfigError("flag: help requested")
                raise ConfigError(f"flag provided but not defined: -{name}")
            attr, kind = spec
            if kind is bool and not sep:
                parsed: Any = True
            else:
                if not sep:
                    if not args:
                        raise ConfigError(f"flag needs an argument: -{name}")
                    value = args.pop(0)
                parsed = _parse_flag_value(name, kind, value)
            setattr(self, attr, parsed)
        return args

    def _config_from_file(self, path: str) -> None:
        try:
            with open(path, "rb") as handle:
                data = tomllib.load(handle)
        except OSError as err:
            raise ConfigError(f"read config file {path}: {err}") from err
        except tomllib.TOMLDecodeError as err:
            raise ConfigError(f"decode config file {path}: {err}") from err
        unknown: list[str] = []
        _decode_into(self, data, "", unknown)
        if unknown:
            raise ConfigError(
                f"unknown keys in config file {path}: [{' '.join(unknown)}]"
            )

    def check_config(self) -> None:
        """Check the settings, filling defaults; raise ``ConfigError`` if wrong."""
        if not PERCENT_MIN <= self.sample <= PERCENT_MAX:
            raise ConfigError(
                "sample must be greater than 0 and less than or equal to 100!"
            )
        if self.check_thread_count <= 0:
            raise ConfigError("check-thcount must greater than 0!")

        if self.dm_addr:
            self._check_dm_config()
        else:
            self._check_db_config()

        if self.only_use_checksum:
            if not self.use_checksum:
                raise ConfigError("need set use-checksum = true")
        elif not self.fix_sql_file:
            logger.warning(
                "fix-sql-file is invalid, will use default value '%s'",
                DEFAULT_FIX_SQL_FILE,
            )
            self.fix_sql_file = DEFAULT_FIX_SQL_FILE

    def _check_dm_config(self) -> None:
        try:
            parts = urlsplit(self.dm_addr)
        except ValueError:
            parts = None
        if parts is None or not parts.scheme or not parts.netloc:
            raise ConfigError("dm-addr's format should like 'http://127.0.0.1:8261'")
        if not self.dm_task:
            raise ConfigError("must set the `dm-task` if set `dm-addr`")
        # Databases and tables are taken from DM, so none may be configured.
        if self.source_db or self.target_db != DBConfig():
            raise ConfigError(
                "should not set `source-db` or `target-db`, diff will generate them "
                "automatically when set `dm-addr` and `dm-task`"
            )
        if self.tables or self.table_rules or self.table_cfgs:
            raise ConfigError(
                "should not set `check-tables`, `table-rules` or `table-config`, "
                "diff will generate them automatically when set `dm-addr` and `dm-task`"
            )

    def _check_db_config(self) -> None:
        if not self.source_db:
            raise ConfigError("must have at least one source database")

        source_instances: set[str] = set()
        for source in self.source_db:
            source._validate(source_instances)
            if source.snapshot:
                source.snapshot = _quote(source.snapshot)

        if not self.target_db.instance_id:
            self.target_db.instance_id = DEFAULT_TARGET_INSTANCE_ID
        if self.target_db.snapshot:
            self.target_db.snapshot = _quote(self.target_db.snapshot)
        if self.target_db.instance_id in source_instances:
            raise ConfigError(
                f"target has same instance id in source: {self.target_db.instance_id}"
            )

        if not self.tables:
            raise ConfigError("must specify check tables")

        for table_cfg in self.table_cfgs:
            table_cfg._validate(source_instances)