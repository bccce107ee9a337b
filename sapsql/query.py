"""Result handling for the ADT data preview service."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass
from typing import Any, Mapping, NamedTuple, Sequence

from .codec import ValueCodec
from .errors import RequestFailure, ResultTooLargeError
from .models import ROW_CEILING_MAX, ColumnSpec, PaginationDirective, ResultEnvelope

LOG = logging.getLogger(__name__)

DATA_PREVIEW_NS = "http://www.sap.com/adt/dataPreview"

_TOTAL_ROWS = f"{{{DATA_PREVIEW_NS}}}totalRows"
_COLUMNS = f"{{{DATA_PREVIEW_NS}}}columns"
_METADATA = f"{{{DATA_PREVIEW_NS}}}metadata"
_NAME = f"{{{DATA_PREVIEW_NS}}}name"
_DATA = f"{{{DATA_PREVIEW_NS}}}data"


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized query output returned to callers."""

    columns: tuple[str, ...]
    rows: tuple[Mapping[str, Any], ...]
    status: str
    elapsed_ms: int
    row_count: int | None = None
    total_row_count: int | None = None
    pagination: PaginationDirective | None = None


class DecodedRows(NamedTuple):
    rows: tuple[dict[str, Any], ...]
    total_row_count: int | None


def parse_data_preview(body: str) -> ResultEnvelope:
    """Read the columnar XML document of the data preview service into rows."""

    try:
        root = ElementTree.fromstring(body.strip())
    except ElementTree.ParseError as exc:
        raise RequestFailure(f"Cannot read data preview response: {exc}") from exc

    names: list[str] = []
    cells: list[list[str]] = []
    for column in root.iter(_COLUMNS):
        metadata = column.find(_METADATA)
        name = metadata.get(_NAME) if metadata is not None else None
        if not name:
            continue
        names.append(name)
        cells.append([data.text or "" for data in column.iter(_DATA)])

    row_total = max((len(values) for values in cells), default=0)
    rows = tuple(
        {name: values[index] for name, values in zip(names, cells) if index < len(values)}
        for index in range(row_total)
    )

    total_rows: int | None = None
    total_node = root.find(f".//{_TOTAL_ROWS}")
    if total_node is not None and total_node.text and total_node.text.strip().isdigit():
        total_rows = int(total_node.text.strip())

    return ResultEnvelope(columns=tuple(names), rows=rows, total_rows=total_rows)


class ResultRowDecoder:
    """Turns raw envelope rows into typed rows and re-applies the offset.

    The SQL console has no offset parameter: it is asked for
    ``limit + offset`` rows from the start, so the first ``offset`` rows are
    dropped here.
    """

    def __init__(self, codec: ValueCodec | None = None) -> None:
        self._codec = codec or ValueCodec()

    def decode(
        self,
        envelope: ResultEnvelope,
        pagination: PaginationDirective,
        expected_columns: Sequence[ColumnSpec] | None = None,
    ) -> DecodedRows:
        raw_rows = envelope.rows[pagination.offset:]
        if len(raw_rows) >= ROW_CEILING_MAX:
            raise ResultTooLargeError(
                f"Query returns too many results: more than {ROW_CEILING_MAX:,}, which is the maximum "
                "for the SAP ADT SQL console. Please add pagination or filters!"
            )

        columns = tuple(expected_columns) if expected_columns else tuple(ColumnSpec(name) for name in envelope.columns)
        rows = tuple(
            {
                spec.column_key: self._codec.decode(raw.get(spec.name), spec.type, sql_data_type=spec.sql_data_type)
                for spec in columns
            }
            for raw in raw_rows
        )

        total = envelope.total_rows
        if total == 0 and rows:
            # TODO: confirm with SAP whether totalRows=0 alongside data is a known NetWeaver bug.
            LOG.debug("Ignoring total row counter of 0 for a non-empty result")
            total = None
        return DecodedRows(rows=rows, total_row_count=total)


__all__ = [
    "DATA_PREVIEW_NS",
    "DecodedRows",
    "QueryResult",
    "ResultRowDecoder",
    "parse_data_preview",
]
