"""Local heuristic text recovery, no network involved.

The PDF text layer is read with PyMuPDF first. When that yields nothing
(damaged file, unusual encoding) the raw content streams are scanned for
``BT ... ET`` text objects and their ``Tj``/``TJ`` string operands, inflating
FlateDecode streams on the way. The result is only returned when most of it
is readable; otherwise the backend fails so the text never reaches the
extractor.
"""

from __future__ import annotations

import logging
import re
import time
import zlib
from typing import Iterator, List

from credit_extraction.config import BackendSettings
from credit_extraction.config.flags import FLAGS
from credit_extraction.core.errors import BackendError, EMPTY_PAYLOAD
from credit_extraction.core.rules import Rules, load_rules
from credit_extraction.core.text import readable_ratio, sanitize_text

from .base import BackendOutput, SynchronousBackend, check_size

logger = logging.getLogger(__name__)

_STREAM_RE = re.compile(rb"stream\r?\n(.*?)endstream", re.S)
_TEXT_OBJECT_RE = re.compile(r"\bBT\b(.*?)\bET\b", re.S)
_TOKEN_RE = re.compile(
    r"\((?:\\.|[^\\()]|\((?:\\.|[^\\()])*\))*\)"
    r"|<[0-9A-Fa-f\s]*>"
    r"|\[|\]"
    r"|-?\d*\.?\d+"
    r"|[A-Za-z'\"*]+",
    re.S,
)
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "b": "\b", "f": "\f", "(": "(", ")": ")", "\\": "\\"}
_LINE_OPERATORS = {"Td", "TD", "T*", "Tm"}
# TJ kerning beyond this many thousandths of an em reads as a word gap.
_KERNING_GAP = -200.0


def text_layer(data: bytes) -> str:
    """Return the PDF text layer via PyMuPDF, or ``""`` when it cannot be read."""

    import fitz  # type: ignore

    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            return "\n".join(page.get_text("text") for page in doc)
    except (RuntimeError, ValueError) as exc:
        logger.debug("HEURISTIC_TEXT_LAYER_FAILED error=%s", exc.__class__.__name__)
        return ""


def _decode_literal(token: str) -> str:
    body = token[1:-1]
    out: List[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        i += 1
        if i >= len(body):
            break
        nxt = body[i]
        if nxt in _ESCAPES:
            out.append(_ESCAPES[nxt])
            i += 1
        elif nxt in "01234567":
            octal = re.match(r"[0-7]{1,3}", body[i:]).group()
            out.append(chr(int(octal, 8) & 0xFF))
            i += len(octal)
        elif nxt in "\r\n":
            # Line continuation.
            i += 2 if body[i : i + 2] == "\r\n" else 1
        else:
            out.append(nxt)
            i += 1
    return "".join(out)


def _decode_hex(token: str) -> str:
    digits = re.sub(r"\s", "", token[1:-1])
    if len(digits) % 2:
        digits += "0"
    raw = bytes.fromhex(digits)
    if len(raw) >= 2 and raw[0::2].count(0) >= len(raw) // 4:
        return raw.decode("utf-16-be", errors="ignore")
    return raw.decode("latin-1")


def _render_text_object(body: str) -> List[str]:
    lines: List[str] = []
    current: List[str] = []
    operands: List[str] = []
    array: List[str] | None = None

    def _break() -> None:
        if current:
            lines.append("".join(current))
            current.clear()

    for token in _TOKEN_RE.findall(body):
        if token.startswith("("):
            (array if array is not None else operands).append(_decode_literal(token))
        elif token.startswith("<"):
            (array if array is not None else operands).append(_decode_hex(token))
        elif token == "[":
            array = []
        elif token == "]":
            if array is not None:
                operands.append("".join(array))
            array = None
        elif token[0].isdigit() or token[0] in "-.":
            if array is not None and float(token) < _KERNING_GAP:
                array.append(" ")
        elif token in ("Tj", "TJ"):
            current.extend(operands)
            operands.clear()
        elif token in ("'", '"'):
            _break()
            current.extend(operands)
            operands.clear()
        elif token in _LINE_OPERATORS:
            _break()
            operands.clear()
        else:
            operands.clear()
    _break()
    return lines


def _content_streams(data: bytes) -> Iterator[str]:
    for m in _STREAM_RE.finditer(data):
        raw = m.group(1)
        try:
            # Trailing end-of-line bytes before endstream are left as unused data.
            raw = zlib.decompressobj().decompress(raw)
        except zlib.error:
            pass
        yield raw.decode("latin-1")


def scan_content_streams(data: bytes) -> str:
    """Recover text from ``BT ... ET`` objects in the raw content streams."""

    lines: List[str] = []
    for content in _content_streams(data):
        for obj in _TEXT_OBJECT_RE.finditer(content):
            lines.extend(_render_text_object(obj.group(1)))
    return "\n".join(lines)


class HeuristicScan(SynchronousBackend):
    name = "heuristic_scan"

    def __init__(
        self,
        settings: BackendSettings | None = None,
        *,
        text_layer_first: bool = FLAGS.heuristic_text_layer_first,
        rules: Rules | None = None,
    ) -> None:
        self.settings = settings or BackendSettings()
        self.text_layer_first = text_layer_first
        self._rules = rules or load_rules()

    def submit(self, data: bytes) -> BackendOutput:
        check_size(self.name, data, self.settings.max_document_bytes)
        started = time.perf_counter()
        source = "content_streams"
        text = ""
        if self.text_layer_first:
            text = sanitize_text(text_layer(data))
            source = "text_layer"
        if not text:
            text = sanitize_text(scan_content_streams(data))
            source = "content_streams"
        if not text:
            raise BackendError(EMPTY_PAYLOAD, "no text found in document", method=self.name)

        ratio = readable_ratio(text)
        if ratio < self._rules.readable_min_ratio:
            raise BackendError(
                EMPTY_PAYLOAD,
                f"recovered text is mostly unreadable (ratio {ratio:.2f})",
                method=self.name,
                transient=False,
            )
        logger.info("HEURISTIC_SCAN_OK source=%s chars=%d ratio=%.2f", source, len(text), ratio)
        return BackendOutput(
            method=self.name,
            text=text,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            metadata={"source": source, "readable_ratio": round(ratio, 4)},
        )
