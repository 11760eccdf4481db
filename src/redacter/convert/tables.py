"""CSV tables: parsing, serialization and text projection."""

from __future__ import annotations

import io
from typing import List, Sequence, Tuple

import pandas as pd

from ..errors import ConversionError
from ..models import Finding, Table


def parse_table(data: bytes, delimiter: str = ",", has_headers: bool = True) -> Table:
    """Parse CSV bytes with every cell kept as a string."""
    if not data.strip():
        return Table(headers=[], rows=[])
    try:
        df = pd.read_csv(
            io.BytesIO(data),
            sep=delimiter,
            header=0 if has_headers else None,
            dtype=str,
            keep_default_na=False,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise ConversionError(f"Failed to parse CSV: {exc}") from exc
    headers = [str(c) for c in df.columns] if has_headers else []
    rows = [[str(v) for v in row] for row in df.values.tolist()]
    return Table(headers=headers, rows=rows)


def serialize_table(table: Table, delimiter: str = ",") -> bytes:
    if not table.headers and not table.rows:
        return b""
    df = pd.DataFrame(table.rows, columns=table.headers or None)
    return df.to_csv(index=False, header=bool(table.headers), sep=delimiter).encode("utf-8")


def table_text(table: Table, delimiter: str = ",") -> Tuple[str, List[Tuple[int, int, int, int]]]:
    """Project the data rows into text for text-only backends.

    Returns the text and the ``(row, column, start, end)`` span of every cell
    inside it, so findings on the text can be moved back onto cells.
    """
    parts: List[str] = []
    spans: List[Tuple[int, int, int, int]] = []
    cursor = 0
    for r, row in enumerate(table.rows):
        for c, cell in enumerate(row):
            if c:
                parts.append(delimiter)
                cursor += len(delimiter)
            spans.append((r, c, cursor, cursor + len(cell)))
            parts.append(cell)
            cursor += len(cell)
        parts.append("\n")
        cursor += 1
    return "".join(parts), spans


def text_findings_to_cells(
    spans: Sequence[Tuple[int, int, int, int]], findings: Sequence[Finding]
) -> List[Finding]:
    out: List[Finding] = []
    for f in findings:
        if f.start is None or f.end is None:
            continue
        for row, col, cs, ce in spans:
            s, e = max(f.start, cs), min(f.end, ce)
            if s < e:
                out.append(
                    Finding(
                        label=f.label, score=f.score, row=row, column=col, start=s - cs, end=e - cs
                    )
                )
    return out


def apply_cell_findings(table: Table, findings: Sequence[Finding], mask: str = "X") -> Table:
    """Mask the cells (or cell substrings) named by ``findings``."""
    rows = [list(r) for r in table.rows]
    for f in findings:
        if not f.is_cell or f.row >= len(rows) or f.column >= len(rows[f.row]):
            continue
        cell = rows[f.row][f.column]
        s = 0 if f.start is None else max(0, f.start)
        e = len(cell) if f.end is None else min(len(cell), f.end)
        if s < e:
            rows[f.row][f.column] = cell[:s] + mask * (e - s) + cell[e:]
    return Table(headers=list(table.headers), rows=rows)
