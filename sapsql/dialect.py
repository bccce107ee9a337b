"""Translation of canonical (MySQL-flavoured) SQL into SAP's SQL surfaces.

Two surfaces are supported. The ADT data preview console accepts SQL text but
rejects inline comments and lines longer than 255 characters, and it ignores
``UP TO`` clauses in favour of a ``rowNumber`` URL parameter. OpenSQL
additionally has no ``LIMIT``, no quoted identifiers, needs whitespace inside
brackets and spells sort directions out in full.

Only textual rewriting is done here; statements are never parsed.
"""

from __future__ import annotations

import hashlib
import logging
import re
import textwrap
from enum import Enum
from typing import Any, Iterable, NamedTuple, Sequence

from .codec import ValueCodec
from .errors import TranslationError
from .models import ROW_CEILING_MAX, ColumnType, PaginationDirective

LOG = logging.getLogger(__name__)

MAX_LINE_LENGTH = 255
SHORT_ALIAS_MAX_LENGTH = 30
SHORT_ALIAS_FORBIDDEN_CHARS = ("/", "~", ".", " ", "-", '"', "'")

_COMMENT = re.compile(r"--[^\r\n]*")
_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_PAGINATION = re.compile(r"UP TO\s+(\S+)\s+OFFSET\s+(\S+)")
_LIMIT = re.compile(r"(\s)LIMIT(\s)")
_OPEN_BRACKET = re.compile(r"\(([^ ])")
_CLOSE_BRACKET = re.compile(r"([^ ])\)")
_ORDER_BY = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
_DIRECTION = re.compile(r" (ASC|DESC)\b")


class SqlDialect(str, Enum):
    """Target SQL surface."""

    CONSOLE = "console"
    OPENSQL = "opensql"


class Comparator(str, Enum):
    """Filter comparators used by the calling data layer."""

    IS = "="
    IS_NOT = "!="
    EQUALS = "=="
    EQUALS_NOT = "!=="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUALS = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUALS = ">="
    IN = "["
    NOT_IN = "!["


class TranslationResult(NamedTuple):
    """Translated statement plus the pagination to apply client-side."""

    sql: str
    pagination: PaginationDirective


class SqlDialectTranslator:
    """Rewrites SQL text for the ADT SQL console and OpenSQL."""

    def __init__(
        self,
        dialect: SqlDialect = SqlDialect.OPENSQL,
        *,
        codec: ValueCodec | None = None,
        max_line_length: int = MAX_LINE_LENGTH,
    ) -> None:
        self._dialect = dialect
        self._codec = codec or ValueCodec()
        self._max_line_length = max_line_length

    @property
    def dialect(self) -> SqlDialect:
        return self._dialect

    def translate(self, sql: str) -> TranslationResult:
        """Translate a statement and derive its pagination directive.

        OpenSQL rewrites run before the ``UP TO`` clause is captured so that a
        canonical ``LIMIT`` clause ends up as the row ceiling too.
        """

        text = strip_comments(sql)
        if self._dialect is SqlDialect.OPENSQL:
            text = to_opensql(text)
        text = normalize_line_breaks(text)
        text, pagination = extract_pagination(text)
        text = wrap_lines(text, self._max_line_length)
        LOG.debug(
            "Translated SQL for %s (row ceiling %s, offset %s)",
            self._dialect.value,
            pagination.row_ceiling,
            pagination.offset,
        )
        return TranslationResult(text, pagination)

    # Clause builders --------------------------------------------------------------------------

    def where_value(
        self,
        value: Any,
        column_type: ColumnType = ColumnType.STRING,
        *,
        source_tz: str | None = None,
        target_tz: str | None = None,
    ) -> str:
        """Format a filter value as an OpenSQL literal."""

        return self._codec.literal(value, column_type, source_tz=source_tz, target_tz=target_tz)

    def where_comparator(
        self,
        subject: str,
        comparator: Comparator | str,
        value: Any,
        column_type: ColumnType = ColumnType.STRING,
    ) -> str:
        """Build a single WHERE condition.

        ``IS``/``IS NOT`` mean "contains" and become ``LIKE '%value%'`` as
        OpenSQL has no such operator. Quoted items of ``IN`` lists are put on
        separate lines to stay below the line length limit.
        """

        comparator = _as_comparator(comparator)
        if comparator in (Comparator.IS, Comparator.IS_NOT):
            needle = self._like_text(value, column_type)
            operator = "LIKE" if comparator is Comparator.IS else "NOT LIKE"
            output = f"{subject} {operator} '%{needle}%'"
        elif comparator in (Comparator.IN, Comparator.NOT_IN):
            items = [self.where_value(item, column_type) for item in _list_values(value)]
            if not items:
                raise TranslationError(f"Empty value list for {subject}")
            operator = "IN" if comparator is Comparator.IN else "NOT IN"
            output = f"{subject} {operator} ({','.join(items)})"
        else:
            operator = {
                Comparator.EQUALS: "=",
                Comparator.EQUALS_NOT: "<>",
                Comparator.LESS_THAN: "<",
                Comparator.LESS_THAN_OR_EQUALS: "<=",
                Comparator.GREATER_THAN: ">",
                Comparator.GREATER_THAN_OR_EQUALS: ">=",
            }[comparator]
            output = f"{subject} {operator} {self.where_value(value, column_type)}"
        return output.replace("','", "',\n'")

    def aggregate(
        self,
        function: str,
        sql: str,
        *,
        is_uid_column: bool = False,
        args: Sequence[str] = (),
        column_type: ColumnType = ColumnType.STRING,
    ) -> str:
        """Build an aggregate expression with SAP's semantics.

        OpenSQL only knows ``COUNT(*)`` and ``COUNT( DISTINCT col )``, and has
        no conditional count.
        """

        name = function.upper()
        if name == "COUNT":
            return "COUNT(*)" if is_uid_column else f"COUNT( DISTINCT {sql} )"
        if name == "COUNT_IF":
            condition = args[0] if args else ""
            parts = condition.split(" ", 1)
            if len(parts) != 2 or not parts[0]:
                raise TranslationError(f'Invalid argument for COUNT_IF aggregator: "{condition}"!')
            comparison = self.where_comparator(sql, parts[0], parts[1], column_type)
            return f"SUM( CASE WHEN {comparison} THEN 1 ELSE 0 END )"
        if name in {"SUM", "AVG", "MIN", "MAX"}:
            return f"{name}( {sql} )"
        raise TranslationError(f"Aggregator {function} is not supported by OpenSQL")

    def null_check(self, expression: str, value_if_null: Any) -> str:
        """Wrap a select expression in COALESCE unless it is a sub-statement."""

        if _is_sql_statement(expression):
            return expression
        if isinstance(value_if_null, (int, float)) and not isinstance(value_if_null, bool):
            fallback = str(value_if_null)
        else:
            fallback = f"'{value_if_null}'"
        return f"COALESCE({expression}, {fallback})"

    @staticmethod
    def select_as(expression: str, alias: str) -> str:
        return f"{expression} AS {alias}"

    @staticmethod
    def comment(text: str) -> str:
        """Comments break OpenSQL statements, so none are ever emitted."""

        return ""

    def _like_text(self, value: Any, column_type: ColumnType) -> str:
        if column_type in (ColumnType.STRING, ColumnType.NUMERIC_STRING):
            text = "" if value is None else str(value)
        else:
            text = self._codec.encode(value, column_type)
        return text.replace("'", "''")


def strip_comments(sql: str) -> str:
    """Remove ``--`` line comments."""

    return _COMMENT.sub("", sql)


def normalize_line_breaks(sql: str) -> str:
    return _LINE_BREAK.sub("\r\n", sql)


def extract_pagination(sql: str) -> tuple[str, PaginationDirective]:
    """Remove the first ``UP TO n OFFSET m`` clause and compute the row ceiling.

    Only that exact upper-case shape counts; anything else, such as a
    subquery's ``UP TO n ROWS``, is left to the backend.
    """

    match = _PAGINATION.search(sql)
    if match is None:
        return sql, PaginationDirective(limit=None, offset=0, row_ceiling=ROW_CEILING_MAX)
    limit = _parse_count(match.group(1), "UP TO")
    offset = _parse_count(match.group(2), "OFFSET")
    stripped = sql[: match.start()] + sql[match.end():]
    return stripped, PaginationDirective(limit=limit, offset=offset, row_ceiling=limit + offset)


def wrap_lines(sql: str, width: int = MAX_LINE_LENGTH) -> str:
    """Break lines longer than ``width`` at whitespace; words are never split."""

    wrapped: list[str] = []
    for line in sql.split("\r\n"):
        if len(line) <= width:
            wrapped.append(line)
            continue
        pieces = textwrap.wrap(
            line,
            width=width,
            expand_tabs=False,
            replace_whitespace=False,
            break_long_words=False,
            break_on_hyphens=False,
        )
        wrapped.extend(pieces or [line])
    return "\r\n".join(wrapped)


def to_opensql(sql: str) -> str:
    """Apply the purely textual MySQL -> OpenSQL replacements."""

    text = _LIMIT.sub(r"\1UP TO\2", sql)
    text = text.replace('"', "")
    text = space_brackets(text)
    return _rewrite_sort_directions(text)


def space_brackets(sql: str) -> str:
    """Ensure a blank after every ``(`` and before every ``)``."""

    previous = None
    while previous != sql:
        previous = sql
        sql = _OPEN_BRACKET.sub(r"( \1", sql)
        sql = _CLOSE_BRACKET.sub(r"\1 )", sql)
    return sql


def short_alias(alias: str) -> str:
    """Uppercase alias of at most 30 characters without forbidden characters."""

    cleaned = alias
    for char in SHORT_ALIAS_FORBIDDEN_CHARS:
        cleaned = cleaned.replace(char, "_")
    cleaned = cleaned.upper()
    if len(cleaned) <= SHORT_ALIAS_MAX_LENGTH:
        return cleaned
    digest = hashlib.md5(alias.encode("utf-8")).hexdigest()[:7].upper()
    return f"{cleaned[: SHORT_ALIAS_MAX_LENGTH - 8]}_{digest}"


def _rewrite_sort_directions(sql: str) -> str:
    match = _ORDER_BY.search(sql)
    if match is None:
        return sql
    tail = _DIRECTION.sub(
        lambda found: " ASCENDING" if found.group(1) == "ASC" else " DESCENDING",
        sql[match.end():],
    )
    return sql[: match.end()] + tail


def _parse_count(raw: str, clause: str) -> int:
    if not raw.isdigit():
        raise TranslationError(f"Invalid {clause} value in SQL: {raw!r}")
    return int(raw)


def _as_comparator(comparator: Comparator | str) -> Comparator:
    if isinstance(comparator, Comparator):
        return comparator
    try:
        return Comparator(comparator)
    except ValueError:
        try:
            return Comparator[comparator.upper().replace(" ", "_")]
        except KeyError as exc:
            raise TranslationError(f"Unsupported comparator {comparator!r}") from exc


def _list_values(value: Any) -> Iterable[Any]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if value is None:
        return []
    return list(value)


def _is_sql_statement(expression: str) -> bool:
    stripped = expression.strip()
    return stripped.startswith("(") and stripped.endswith(")")


__all__ = [
    "Comparator",
    "MAX_LINE_LENGTH",
    "SqlDialect",
    "SqlDialectTranslator",
    "TranslationResult",
    "extract_pagination",
    "normalize_line_breaks",
    "short_alias",
    "space_brackets",
    "strip_comments",
    "to_opensql",
    "wrap_lines",
]
