"""Flatten vendor block output into the line format read by the extractor.

Free text stays as plain lines. Key/value pairs become ``KV: label: value``
and table rows become ``TABLE <n>: cell | cell``; the first row of each table
is its header.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence, Tuple

KV_PREFIX = "KV:"
TABLE_PREFIX = "TABLE"


def _cell(value: Any) -> str:
    return " ".join(str(value or "").replace("|", "/").split())


def kv_line(label: Any, value: Any) -> str:
    return f"{KV_PREFIX} {_cell(label).rstrip(':')}: {_cell(value)}"


def table_lines(index: int, rows: Iterable[Sequence[Any]]) -> List[str]:
    out = []
    for row in rows:
        cells = [_cell(c) for c in row]
        if any(cells):
            out.append(f"{TABLE_PREFIX} {index}: " + " | ".join(cells))
    return out


def flatten_blocks(blocks: Iterable[Mapping[str, Any]]) -> Tuple[str, bool]:
    """Return ``(text, has_structured_data)`` for a vendor block list.

    Blocks are dicts with a ``BlockType`` of ``LINE`` (``Text``),
    ``KEY_VALUE`` (``Key``/``Value``) or ``TABLE`` (``Rows``, a list of cell
    lists). Other block types are ignored.
    """

    lines: List[str] = []
    structured = False
    table_index = 0
    for block in blocks:
        kind = str(block.get("BlockType") or "").upper()
        if kind == "LINE":
            text = str(block.get("Text") or "").strip()
            if text:
                lines.append(text)
        elif kind == "KEY_VALUE":
            if block.get("Key"):
                lines.append(kv_line(block.get("Key"), block.get("Value")))
                structured = True
        elif kind == "TABLE":
            table_index += 1
            rows = table_lines(table_index, block.get("Rows") or [])
            if rows:
                lines.extend(rows)
                structured = True
    return "\n".join(lines), structured
