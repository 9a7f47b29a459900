"""Trie-based selector that maps schema/table wildcard patterns to rules.

Patterns support:

* ``*`` matches zero or more characters and must be the last character;
* ``?`` matches exactly one character;
* ``[...]`` matches one character from a set of characters or ranges
  (``a-z``), negated with a leading ``!``.
"""

from __future__ import annotations

import enum
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Union

ASTERISK = "*"
QUESTION = "?"
RANGE_OPEN = "["
RANGE_CLOSE = "]"
RANGE_NOT = "!"
RANGE_BETWEEN = "-"

MAX_CACHE_NUM = 1024


class InsertType(enum.IntEnum):
    """How a rule is stored when the pattern already has rules."""

    INSERT = 0
    REPLACE = 1
    APPEND = 2


class SelectorError(Exception):
    """Base class for selector errors."""


class AlreadyExistsError(SelectorError):
    """A rule already exists for the pattern."""


class NotFoundError(SelectorError):
    """The pattern or its rule does not exist."""


class NotValidError(SelectorError):
    """The pattern or arguments are malformed."""


def _annotate(err: SelectorError, message: str) -> SelectorError:
    return type(err)(f"{message}: {err}")


@dataclass(frozen=True)
class _Range:
    start: str
    end: str
    has_between: bool


@dataclass(frozen=True)
class _RangeSpec:
    has_not: bool
    ranges: tuple[_Range, ...]

    def covered_by(self, other: _RangeSpec) -> bool:
        if self.has_not != other.has_not:
            return False
        return all(
            any(o.start <= r.start and r.end <= o.end for o in other.ranges)
            for r in self.ranges
        )

    def same_as(self, other: _RangeSpec) -> bool:
        return self.covered_by(other) and other.covered_by(self)

    def matches(self, ch: str) -> bool:
        if any(r.start <= ch <= r.end for r in self.ranges):
            return not self.has_not
        return self.has_not

    def __str__(self) -> str:
        parts = [RANGE_OPEN]
        if self.has_not:
            parts.append(RANGE_NOT)
        for r in self.ranges:
            if r.has_between:
                parts.append(f"{r.start}{RANGE_BETWEEN}{r.end}")
            else:
                parts.append(r.start)
        parts.append(RANGE_CLOSE)
        return "".join(parts)


def _parse_range(pattern: str) -> tuple[_RangeSpec | None, int]:
    """Parse a range starting at ``pattern[0] == '['``.

    Returns the spec and the index of the closing bracket, or ``(None, -1)``
    when the bracket is never closed.
    """
    close = pattern.find(RANGE_CLOSE)
    if close == -1:
        return None, -1
    body = pattern[1:close]
    has_not = body.startswith(RANGE_NOT)
    if has_not:
        body = body[1:]

    ranges: list[_Range] = []
    pos = 0
    while pos < len(body):
        if pos + 2 < len(body) and body[pos + 1] == RANGE_BETWEEN:
            ranges.append(_Range(body[pos], body[pos + 2], True))
            pos += 3
        else:
            ranges.append(_Range(body[pos], body[pos], False))
            pos += 1

    # A lone "[!]" means the literal exclamation mark.
    if not ranges and has_not:
        has_not = False
        ranges.append(_Range(RANGE_NOT, RANGE_NOT, False))
    return _RangeSpec(has_not, tuple(ranges)), close


class _Wildcard(enum.Enum):
    ASTERISK = ASTERISK
    QUESTION = QUESTION


_Token = Union[_Wildcard, _RangeSpec, str]


def _tokenize(pattern: str) -> Iterator[_Token]:
    pos = 0
    while pos < len(pattern):
        ch = pattern[pos]
        if ch == ASTERISK:
            yield _Wildcard.ASTERISK
        elif ch == QUESTION:
            yield _Wildcard.QUESTION
        elif ch == RANGE_OPEN:
            spec, close = _parse_range(pattern[pos:])
            if spec is None:
                yield ch
            else:
                yield spec
                pos += close
        else:
            yield ch
        pos += 1


@dataclass(eq=False)
class _Item:
    child: _Node | None = None
    rules: list[Any] | None = None
    # schema level -> table level
    next_level: _Node | None = None


@dataclass(eq=False)
class _Node:
    characters: dict[str, _Item] = field(default_factory=dict)
    asterisk: _Item | None = None
    question: _Item | None = None
    r_items: list[tuple[_RangeSpec, _Item]] = field(default_factory=list)

    def find_range(self, spec: _RangeSpec) -> _Item | None:
        for existing, item in self.r_items:
            if spec.same_as(existing):
                return item
        return None


@dataclass
class _MatchedResult:
    nodes: list[_Node] = field(default_factory=list)
    rules: list[Any] = field(default_factory=list)

    def add(self, entity: _Item) -> None:
        if entity.rules is not None:
            self.rules.extend(entity.rules)
        if entity.next_level is not None:
            self.nodes.append(entity.next_level)

    def empty(self) -> bool:
        return not self.nodes and not self.rules


def quote_schema_table(schema: str, table: str) -> str:
    """Return the backquoted ``schema.table`` name used as cache key."""
    if not schema:
        return ""
    if table:
        return f"`{schema}`.`{table}`"
    return f"`{schema}`"


class TrieSelector:
    """Stores rules for schema/table patterns and retrieves matching ones."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._cache: dict[str, list[Any]] = {}
        self._root = _Node()

    def insert(
        self,
        schema: str,
        table: str,
        rule: Any,
        insert_type: InsertType = InsertType.INSERT,
    ) -> None:
        """Insert a rule at schema level (empty table) or table level."""
        if not schema or rule is None:
            raise NotValidError(
                f"schema pattern {schema!r} or rule {rule!r} can't be empty"
            )
        with self._lock:
            if not table:
                try:
                    self._insert(self._root, schema, rule, insert_type)
                except SelectorError as err:
                    raise _annotate(err, "insert into schema selector") from err
            else:
                self._insert_table(schema, table, rule, insert_type)

    def _insert_table(
        self, schema: str, table: str, rule: Any, insert_type: InsertType
    ) -> None:
        try:
            schema_entity = self._insert(self._root, schema, None, InsertType.INSERT)
        except SelectorError as err:
            raise _annotate(err, "insert into schema selector") from err
        if schema_entity.next_level is None:
            schema_entity.next_level = _Node()
        try:
            self._insert(schema_entity.next_level, table, rule, insert_type)
        except SelectorError as err:
            raise _annotate(err, "insert into table selector") from err

    def _insert(
        self, root: _Node, pattern: str, rule: Any, insert_type: InsertType
    ) -> _Item:
        node = root
        had_asterisk = False
        entity: _Item | None = None

        for token in _tokenize(pattern):
            if had_asterisk:
                raise NotValidError(f"pattern {pattern} is not valid")
            if token is _Wildcard.ASTERISK:
                if node.asterisk is None:
                    node.asterisk = _Item()
                entity = node.asterisk
                had_asterisk = True
            elif token is _Wildcard.QUESTION:
                if node.question is None:
                    node.question = _Item()
                entity = node.question
            elif isinstance(token, _RangeSpec):
                entity = node.find_range(token)
                if entity is None:
                    entity = _Item()
                    node.r_items.append((token, entity))
            else:
                entity = node.characters.get(token)
                if entity is None:
                    entity = _Item()
                    node.characters[token] = entity
            if entity.child is None:
                entity.child = _Node()
            node = entity.child

        if entity is None:
            raise NotValidError(f"pattern {pattern!r} is not valid")

        if rule is not None:
            if insert_type == InsertType.INSERT and entity.rules is not None:
                raise AlreadyExistsError(f"pattern {pattern} already exists")
            if insert_type == InsertType.REPLACE:
                entity.rules = [rule]
            else:
                entity.rules = [*(entity.rules or ()), rule]
            self._cache.clear()

        return entity

    def match(self, schema: str, table: str) -> list[Any]:
        """Return all rules matching the schema/table pair."""
        cache_key = quote_schema_table(schema, table)
        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return list(cached)

            schema_result = _MatchedResult()
            self._match_node(self._root, schema, schema_result)
            if schema_result.empty():
                self._add_to_cache(cache_key, [])
                return []

            rules = list(schema_result.rules)
            for table_root in schema_result.nodes:
                table_result = _MatchedResult()
                self._match_node(table_root, table, table_result)
                rules.extend(table_result.rules)

            self._add_to_cache(cache_key, rules)
            return list(rules)

    def _match_node(self, node: _Node | None, s: str, result: _MatchedResult) -> None:
        if node is None:
            return

        entity: _Item | None = None
        last = len(s) - 1
        for i, ch in enumerate(s):
            if node.asterisk is not None:
                result.add(node.asterisk)

            if node.question is not None:
                if i == last:
                    result.add(node.question)
                self._match_node(node.question.child, s[i + 1 :], result)

            for spec, r_item in node.r_items:
                if spec.matches(ch):
                    if i == last:
                        result.add(r_item)
                    self._match_node(r_item.child, s[i + 1 :], result)

            entity = node.characters.get(ch)
            if entity is None:
                return
            node = entity.child

        if entity is not None:
            result.add(entity)
        if node.asterisk is not None:
            result.add(node.asterisk)

    def remove(self, schema: str, table: str) -> None:
        """Remove the rule stored for the exact schema/table pattern."""
        with self._lock:
            if not schema:
                raise NotValidError(f"schema/table {schema}/{table} is not valid")

            try:
                schema_items = self._track(self._root, schema)
            except SelectorError as err:
                raise _annotate(
                    err, f"track schema/table {schema}/{table} in schema level"
                ) from err

            schema_leaf = schema_items[-1]
            if table:
                if schema_leaf.next_level is None:
                    raise NotFoundError(
                        f"table level while we track schema/table {schema}/{table}"
                        " not found"
                    )
                try:
                    table_items = self._track(schema_leaf.next_level, table)
                except SelectorError as err:
                    raise _annotate(
                        err, f"track schema/table {schema}/{table} in table level"
                    ) from err
                table_leaf = table_items[-1]
                if table_leaf.rules is None:
                    raise NotFoundError(
                        f"schema/table {schema}/{table} in table level not found"
                    )
                table_leaf.rules = None
                self._cache.clear()
                return

            if schema_leaf.rules is None:
                raise NotFoundError(
                    f"schema/table {schema}/{table} in schema level not found"
                )
            schema_leaf.rules = None
            self._cache.clear()

    @staticmethod
    def _track(node: _Node, pattern: str) -> list[_Item]:
        tokens = list(_tokenize(pattern))
        items: list[_Item] = []
        for position, token in enumerate(tokens):
            if token is _Wildcard.ASTERISK:
                if node.asterisk is None:
                    raise NotFoundError(f"pattern {pattern} not found")
                if position != len(tokens) - 1:
                    raise NotValidError(f"pattern {pattern} is not valid")
                items.append(node.asterisk)
                continue
            if token is _Wildcard.QUESTION:
                item = node.question
            elif isinstance(token, _RangeSpec):
                item = node.find_range(token)
            else:
                item = node.characters.get(token)
            if item is None or item.child is None:
                raise NotFoundError(f"pattern {pattern} not found")
            items.append(item)
            node = item.child
        return items

    def all_rules(self) -> tuple[dict[str, list[Any]], dict[str, dict[str, list[Any]]]]:
        """Return ``(schema_rules, table_rules)`` keyed by pattern."""
        schema_rules: dict[str, list[Any]] = {}
        schema_nodes: dict[str, _Node] = {}
        table_rules: dict[str, dict[str, list[Any]]] = {}
        with self._lock:
            self._travel(self._root, "", schema_rules, schema_nodes)
            for schema, node in schema_nodes.items():
                rules: dict[str, list[Any]] = {}
                self._travel(node, "", rules, None)
                if rules:
                    table_rules[schema] = rules
        return schema_rules, table_rules

    def _travel(
        self,
        node: _Node | None,
        word: str,
        rules: dict[str, list[Any]],
        nodes: dict[str, _Node] | None,
    ) -> None:
        if node is None:
            return

        def record(pattern: str, entity: _Item) -> None:
            if entity.rules is not None:
                rules[pattern] = list(entity.rules)
            if nodes is not None and entity.next_level is not None:
                nodes[pattern] = entity.next_level

        if node.asterisk is not None:
            record(word + ASTERISK, node.asterisk)

        if node.question is not None:
            pattern = word + QUESTION
            record(pattern, node.question)
            self._travel(node.question.child, pattern, rules, nodes)

        for spec, r_item in node.r_items:
            pattern = word + str(spec)
            record(pattern, r_item)
            self._travel(r_item.child, pattern, rules, nodes)

        for ch, item in node.characters.items():
            pattern = word + ch
            record(pattern, item)
            self._travel(item.child, pattern, rules, nodes)

    def _add_to_cache(self, key: str, rules: list[Any]) -> None:
        self._cache[key] = rules
        if len(self._cache) > MAX_CACHE_NUM:
            del self._cache[next(iter(self._cache))]