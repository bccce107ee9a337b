"""Tests for SQL translation into the SAP dialects."""

from __future__ import annotations

import pytest

from sapsql.dialect import (
    Comparator,
    SqlDialect,
    SqlDialectTranslator,
    extract_pagination,
    short_alias,
    space_brackets,
    strip_comments,
    wrap_lines,
)
from sapsql.errors import TranslationError
from sapsql.models import ROW_CEILING_MAX, ColumnType


def test_up_to_with_offset_sets_row_ceiling() -> None:
    result = SqlDialectTranslator().translate("SELECT MATNR FROM MARA UP TO 10 OFFSET 20")

    assert "UP TO" not in result.sql
    assert result.pagination.limit == 10
    assert result.pagination.offset == 20
    assert result.pagination.row_ceiling == 30


def test_missing_pagination_uses_maximum_ceiling() -> None:
    result = SqlDialectTranslator().translate("SELECT MATNR FROM MARA")

    assert result.pagination.limit is None
    assert result.pagination.offset == 0
    assert result.pagination.row_ceiling == ROW_CEILING_MAX


def test_limit_is_rewritten_for_opensql() -> None:
    result = SqlDialectTranslator().translate("SELECT MATNR FROM MARA LIMIT 5 OFFSET 5")

    assert result.pagination.row_ceiling == 10
    assert "LIMIT" not in result.sql


def test_console_dialect_keeps_text_as_is() -> None:
    result = SqlDialectTranslator(SqlDialect.CONSOLE).translate('SELECT "MATNR" FROM MARA')

    assert result.sql == 'SELECT "MATNR" FROM MARA'
    assert result.pagination.row_ceiling == ROW_CEILING_MAX


def test_up_to_without_offset_is_left_for_the_backend() -> None:
    sql, pagination = extract_pagination("SELECT * FROM T001 UP TO 7 ROWS")

    assert sql == "SELECT * FROM T001 UP TO 7 ROWS"
    assert pagination.limit is None
    assert pagination.row_ceiling == ROW_CEILING_MAX


def test_invalid_pagination_raises() -> None:
    with pytest.raises(TranslationError):
        extract_pagination("SELECT * FROM T001 UP TO many OFFSET 0")


def test_lowercase_up_to_in_literals_is_not_pagination() -> None:
    translator = SqlDialectTranslator()
    condition = translator.where_comparator("MAKTX", Comparator.IS, "up to date")

    result = translator.translate(f"SELECT MATNR FROM MAKT WHERE {condition}")

    assert result.sql == "SELECT MATNR FROM MAKT WHERE MAKTX LIKE '%up to date%'"
    assert result.pagination.row_ceiling == ROW_CEILING_MAX


def test_subquery_row_limit_does_not_hide_outer_pagination() -> None:
    result = SqlDialectTranslator().translate(
        "SELECT A FROM T WHERE B IN ( SELECT B FROM U UP TO 1 ROWS ) UP TO 10 OFFSET 20"
    )

    assert result.pagination.row_ceiling == 30
    assert result.pagination.offset == 20
    assert "UP TO 1 ROWS" in result.sql
    assert "OFFSET" not in result.sql


def test_comments_are_removed_and_line_breaks_normalized() -> None:
    result = SqlDialectTranslator().translate("SELECT MATNR -- material\nFROM MARA")

    assert "material" not in result.sql
    assert result.sql == "SELECT MATNR \r\nFROM MARA"
    assert strip_comments("a -- b") == "a "


def test_long_lines_are_wrapped_at_whitespace() -> None:
    columns = ", ".join(f"COLUMN_{index:03d}" for index in range(40))
    sql = f"SELECT {columns} FROM ZTABLE"

    wrapped = wrap_lines(sql)

    assert all(len(line) <= 255 for line in wrapped.split("\r\n"))
    assert wrapped.replace("\r\n", " ") == sql


def test_words_longer_than_line_are_not_split() -> None:
    word = "X" * 300

    assert wrap_lines(f"SELECT {word}") == f"SELECT\r\n{word}"


def test_opensql_rewrites_identifiers_brackets_and_sorting() -> None:
    result = SqlDialectTranslator().translate('SELECT "MATNR", COUNT(MATNR) FROM MARA ORDER BY MATNR DESC, MTART ASC')

    assert result.sql == "SELECT MATNR, COUNT( MATNR ) FROM MARA ORDER BY MATNR DESCENDING, MTART ASCENDING"


def test_sort_rewrite_leaves_lowercase_words_alone() -> None:
    result = SqlDialectTranslator().translate("SELECT desc FROM ZT ORDER BY desc, ZDESC DESC")

    assert result.sql == "SELECT desc FROM ZT ORDER BY desc, ZDESC DESCENDING"


def test_space_brackets_handles_nesting() -> None:
    assert space_brackets("COALESCE(SUM(X),0)") == "COALESCE( SUM( X ),0 )"


def test_is_becomes_like() -> None:
    translator = SqlDialectTranslator()

    assert translator.where_comparator("MAKTX", Comparator.IS, "bolt") == "MAKTX LIKE '%bolt%'"
    assert translator.where_comparator("MAKTX", "!=", "bolt") == "MAKTX NOT LIKE '%bolt%'"


def test_equals_uses_codec_literals() -> None:
    translator = SqlDialectTranslator()

    assert translator.where_comparator("FLAG", "==", True, ColumnType.BOOLEAN) == "FLAG = 'X'"
    assert translator.where_comparator("MENGE", "<", 5, ColumnType.NUMBER) == "MENGE < 5"
    assert translator.where_comparator("MATNR", "!==", "A", ColumnType.STRING) == "MATNR <> 'A'"
    assert translator.where_comparator("ERSDA", ">=", "2024-01-01", ColumnType.DATE) == "ERSDA >= '20240101'"


def test_in_lists_put_items_on_separate_lines() -> None:
    condition = SqlDialectTranslator().where_comparator("MATNR", Comparator.IN, "A,B")

    assert condition == "MATNR IN ('A',\n'B')"


def test_unknown_comparator_raises() -> None:
    with pytest.raises(TranslationError):
        SqlDialectTranslator().where_comparator("MATNR", "~", "A")


def test_count_aggregates_follow_opensql_rules() -> None:
    translator = SqlDialectTranslator()

    assert translator.aggregate("COUNT", "MATNR", is_uid_column=True) == "COUNT(*)"
    assert translator.aggregate("count", "MATNR") == "COUNT( DISTINCT MATNR )"
    assert translator.aggregate("SUM", "MENGE") == "SUM( MENGE )"


def test_count_if_becomes_conditional_sum() -> None:
    expression = SqlDialectTranslator().aggregate("COUNT_IF", "FLAG", args=["== X"], column_type=ColumnType.BOOLEAN)

    assert expression == "SUM( CASE WHEN FLAG = 'X' THEN 1 ELSE 0 END )"


def test_count_if_requires_comparator_and_value() -> None:
    with pytest.raises(TranslationError):
        SqlDialectTranslator().aggregate("COUNT_IF", "FLAG", args=["=="])


def test_unsupported_aggregate_raises() -> None:
    with pytest.raises(TranslationError):
        SqlDialectTranslator().aggregate("LIST", "MATNR")


def test_null_check_wraps_plain_expressions_only() -> None:
    translator = SqlDialectTranslator()

    assert translator.null_check("MENGE", 0) == "COALESCE(MENGE, 0)"
    assert translator.null_check("MAKTX", "-") == "COALESCE(MAKTX, '-')"
    assert translator.null_check("(SELECT 1 FROM T000)", 0) == "(SELECT 1 FROM T000)"


def test_aliases_and_comments() -> None:
    translator = SqlDialectTranslator()

    assert translator.select_as("MATNR", "MATERIAL") == "MATNR AS MATERIAL"
    assert translator.comment("anything") == ""


def test_short_alias_is_limited_and_sanitized() -> None:
    assert short_alias("plant/stock") == "PLANT_STOCK"
    long_alias = short_alias("material__description__in__language__en")

    assert len(long_alias) == 30
    assert "/" not in long_alias
    assert long_alias != short_alias("material__description__in__language__de")
