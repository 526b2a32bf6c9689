"""Decoder turning raw response text into an ordered pair list.

Garbage input (an empty reply, something that is not HTTP, a broken status
line) is not an error: it decodes into ``HTTPVersion``/``StatusCode``
entries starting with ``"Unknown - "`` so negative tests can assert on it.
A response that starts out as HTTP and then breaks framing, such as a
header line without a colon or bad chunk sizes, raises
:class:`MalformedResponseError`.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Mapping
from typing import Optional

from .items import ItemList
from .metrics import record_decode

LOGGER = logging.getLogger(__name__)

CRLF = "\r\n"
HEADER_BODY_BOUNDARY = CRLF + CRLF

EMPTY_RESPONSE = "Unknown - Empty Response"
NOT_HTTP = "Unknown - Response not HTTP"
BAD_TOP_LINE = "Unknown - Response header top line not in correct format"
BAD_TOP_LINE_STATUS = "Unknown - Response not formatted correctly"

FIRST_LINE_CLIP_AT = 20
FIRST_LINE_KEEP = 17

_HEX_PATTERN = re.compile(r"^[0-9A-Fa-f]+$")


class MalformedResponseError(ValueError):
    """Raised when a recognisable HTTP response cannot be decoded."""

    def __init__(
        self,
        text: str,
        *,
        step: Optional[str] = None,
        data: Optional[Mapping[str, object]] = None,
    ) -> None:
        super().__init__(f"Invalid HTTP Response: {text}")
        self.step = step
        self.data: dict[str, object] = dict(data or {})


class ChunkState(enum.Enum):
    READ_SIZE = "read_size"
    READ_DATA = "read_data"
    EXPECT_CRLF = "expect_crlf"
    DONE = "done"
    ERROR = "error"


def _clip_first_line(line: str) -> str:
    if len(line) >= FIRST_LINE_CLIP_AT:
        return line[:FIRST_LINE_KEEP] + "..."
    return line


def _first_line(text: str) -> str:
    return text.split("\r", 1)[0].split("\n", 1)[0]


def _is_chunked(headers: ItemList) -> bool:
    for key, value in headers:
        if key.strip().lower() != "transfer-encoding":
            continue
        codings = [coding.strip().lower() for coding in value.split(",")]
        if codings and codings[-1] == "chunked":
            return True
    return False


def dechunk_body(body_area: str) -> str:
    """Reassemble a chunked body.

    Reads ``<hex size>CRLF<data>CRLF`` repeatedly until a zero size.  Chunk
    extensions after ``;`` are ignored and trailers after the last chunk are
    not consumed.
    """

    state = ChunkState.READ_SIZE
    remaining = body_area
    size = 0
    parts: list[str] = []
    failure = ""
    failure_data: dict[str, object] = {}

    while state not in (ChunkState.DONE, ChunkState.ERROR):
        if state is ChunkState.READ_SIZE:
            line_end = remaining.find(CRLF)
            if line_end < 0:
                failure = "Fatal error decoding chunked body. Chunk size line not terminated by CRLF"
                failure_data = {"chunk_data": remaining}
                state = ChunkState.ERROR
                continue
            size_text = remaining[:line_end].split(";", 1)[0].strip()
            remaining = remaining[line_end + len(CRLF) :]
            if not _HEX_PATTERN.match(size_text):
                failure = f"Fatal error decoding chunked body. Parsing Hex [{size_text}] failed"
                failure_data = {"chunk_size": size_text}
                state = ChunkState.ERROR
                continue
            size = int(size_text, 16)
            state = ChunkState.DONE if size == 0 else ChunkState.READ_DATA
        elif state is ChunkState.READ_DATA:
            if len(remaining) < size:
                failure = f"Fatal error decoding chunked body. Chunk of length {size} truncated"
                failure_data = {"chunk_length": size, "chunk_data": remaining}
                state = ChunkState.ERROR
                continue
            parts.append(remaining[:size])
            remaining = remaining[size:]
            state = ChunkState.EXPECT_CRLF
        elif state is ChunkState.EXPECT_CRLF:
            if not remaining.startswith(CRLF):
                failure = "Fatal error decoding chunked body. End of chunk length not CRLF!"
                failure_data = {"chunk_length": size, "chunk_data": remaining}
                state = ChunkState.ERROR
                continue
            remaining = remaining[len(CRLF) :]
            state = ChunkState.READ_SIZE

    if state is ChunkState.ERROR:
        raise MalformedResponseError(failure, step="dechunk", data=failure_data)
    return "".join(parts)


def decode_response(raw_text: Optional[str]) -> ItemList:
    """Decode ``raw_text`` into ``HTTPVersion``, ``StatusCode``, headers and ``Body``."""

    result = ItemList()
    step = "empty check"
    try:
        if raw_text is None or not raw_text.strip():
            result.add("HTTPVersion", EMPTY_RESPONSE)
            result.add("StatusCode", EMPTY_RESPONSE)
            record_decode("empty")
            return result

        step = "protocol check"
        if not raw_text.startswith("HTTP"):
            first_line = _clip_first_line(_first_line(raw_text))
            result.add("HTTPVersion", f"{NOT_HTTP}: FirstLine=[{first_line}]")
            result.add("StatusCode", NOT_HTTP)
            record_decode("not_http")
            return result

        step = "header/body split"
        boundary = raw_text.find(HEADER_BODY_BOUNDARY)
        if boundary < 0:
            # Header-only reply; a single trailing CRLF closes the last line.
            header_area, body_area = raw_text, ""
            if header_area.endswith(CRLF):
                header_area = header_area[: -len(CRLF)]
        else:
            header_area = raw_text[:boundary]
            body_area = raw_text[boundary + len(HEADER_BODY_BOUNDARY) :]

        step = "status line"
        top_line = _first_line(header_area)
        top_parts = top_line.split(" ", 2)
        if len(top_parts) < 3 or "/" not in top_parts[0]:
            result.add("HTTPVersion", f"{BAD_TOP_LINE}: [{_clip_first_line(top_line)}]")
            result.add("StatusCode", BAD_TOP_LINE_STATUS)
            record_decode("bad_status_line")
            return result

        result.add("HTTPVersion", top_parts[0].partition("/")[2])
        result.add("StatusCode", top_parts[1])
        result.add("StatusText", top_parts[2].strip())

        step = "header lines"
        headers = ItemList()
        for index, line in enumerate(header_area.split(CRLF)[1:], start=1):
            if ":" not in line:
                raise MalformedResponseError(
                    f"Response contained invalid header line [{index}]. No colon (:) present: [{line}]",
                    step=step,
                    data={"line_index": index, "line": line},
                )
            key, _, value = line.partition(":")
            headers.add(key, value)
        result.extend(headers)

        step = "body"
        if _is_chunked(headers):
            result.add("Body", dechunk_body(body_area))
        else:
            result.add("Body", body_area)
        record_decode("ok")
        return result
    except MalformedResponseError as exc:
        LOGGER.debug("Malformed response at %s: %s", exc.step or step, exc)
        record_decode("malformed")
        raise
    except Exception as exc:
        record_decode("malformed")
        raise MalformedResponseError(
            f"Fatal error decoding raw response during {step}: {exc}",
            step=step,
        ) from exc


__all__ = [
    "BAD_TOP_LINE",
    "BAD_TOP_LINE_STATUS",
    "ChunkState",
    "EMPTY_RESPONSE",
    "MalformedResponseError",
    "NOT_HTTP",
    "dechunk_body",
    "decode_response",
]
