"""Reassemble upstream columnar tables into field-keyed records."""

from __future__ import annotations

from typing import Any, Dict, List

from ..datalake.schemas import ColumnarTable

Record = Dict[str, Any]


def decode(table: ColumnarTable) -> List[Record]:
    """Map every row onto its declared column names.

    Structural only: values are passed through untouched. A row shorter than the
    column list yields ``None`` for the missing trailing columns.
    """

    if table.is_empty:
        return []
    names = [column.name for column in table.columns]
    records: List[Record] = []
    for row in table.rows:
        width = len(row)
        records.append({name: row[index] if index < width else None for index, name in enumerate(names)})
    return records


def decode_response(payload: Any) -> List[Record]:
    """Decode a raw JSON response.

    The upstream returns an array of tables and only ever populates the first
    one. A bare table object is accepted as well; anything else is "no data".
    """

    if isinstance(payload, list):
        if not payload:
            return []
        return decode(ColumnarTable.from_payload(payload[0]))
    if isinstance(payload, dict):
        return decode(ColumnarTable.from_payload(payload))
    return []


__all__ = ["Record", "decode", "decode_response"]
