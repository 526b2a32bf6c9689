"""Request text builder for RawProbe.

The builder never validates what the caller hands it.  A raw header string
is sent exactly as given, so deliberately broken requests (missing colons,
wrong Content-Length, stray line endings) reach the server untouched.
Structured pair lists are rendered with the configured delimiters.

Wire layout produced by :meth:`HttpRequest.serialize`::

    <METHOD> <path>?<query> HTTP/1.1\r\n     (only when a method is set)
    <header text>
    \r\n
    <body, or a second \r\n when the body is empty>
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .config import ConfigurationError, ProbeSettings
from .items import ItemList, Pair

LOGGER = logging.getLogger(__name__)

_DIGITS = "0123456789"


class HttpMethod(str, Enum):
    """Request methods.  Only GET and POST can be serialized."""

    GET = "GET"
    POST = "POST"
    HEAD = "HEAD"
    PUT = "PUT"
    DELETE = "DELETE"
    CONNECT = "CONNECT"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    PATCH = "PATCH"

    @classmethod
    def parse(cls, value: Union[str, "HttpMethod"]) -> "HttpMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ConfigurationError(f"Unsupported HTTP method '{value}'") from exc


@dataclass(frozen=True)
class RawText:
    """Header or query text used verbatim."""

    text: str


@dataclass(frozen=True)
class Pairs:
    """Header or query built from ordered name/value pairs."""

    items: ItemList = field(default_factory=ItemList)


Source = Union[RawText, Pairs, None]
SourceInput = Union[RawText, Pairs, str, ItemList, Iterable[Pair], None]


def coerce_source(value: SourceInput) -> Source:
    """Normalise a caller supplied header/query value into a tagged source."""

    if value is None or isinstance(value, (RawText, Pairs)):
        return value
    if isinstance(value, str):
        return RawText(value)
    if isinstance(value, Mapping):
        value = value.items()
    try:
        return Pairs(ItemList((str(key), str(item)) for key, item in value))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Header and query values must be a string or name/value pairs, not {type(value).__name__}"
        ) from exc


def render_header(items: Iterable[Pair], settings: ProbeSettings) -> str:
    pairs = list(items)
    if not pairs:
        return ""
    space = " " if settings.space_after_header_delimiter else ""
    lines = [f"{key}{settings.header_item_delimiter}{space}{value}" for key, value in pairs]
    return settings.header_line_terminator.join(lines) + settings.header_line_terminator


def render_query(items: Iterable[Pair], settings: ProbeSettings) -> str:
    return settings.query_parameter_separator.join(
        f"{key}{settings.query_name_value_separator}{value}" for key, value in items
    )


def patch_content_length(
    header: str,
    body_length: int,
    *,
    title: str = "Content-Length",
    delimiter: str = ":",
    line_terminator: str = "\r\n",
    space_after_delimiter: bool = True,
) -> str:
    """Add or overwrite the Content-Length value inside raw header text.

    This is string surgery, not header parsing.  When ``title`` occurs in
    ``header`` the first digit run (or line terminator) after it is located
    and the digits there are replaced by ``body_length``.  Nothing else in
    the header is touched, so a corrupted header may be patched in an odd
    place; that is accepted.  When ``title`` is absent a new line
    ``<title><delimiter>[ ]<length><terminator>`` is appended.
    """

    length = str(body_length)
    title_index = header.find(title) if title else -1
    if title_index < 0:
        space = " " if space_after_delimiter else ""
        return f"{header}{title}{delimiter}{space}{length}{line_terminator}"

    after_title = title_index + len(title)
    stop_chars = set(_DIGITS + line_terminator)
    position = next(
        (index for index in range(after_title, len(header)) if header[index] in stop_chars),
        -1,
    )

    if position >= 0 and header[position] in _DIGITS:
        end = position
        while end < len(header) and header[end] in _DIGITS:
            end += 1
        return header[:position] + length + header[end:]

    if position >= 0:
        # Terminator reached before any digit: value was blank.
        return header[:position] + length + header[position:]

    insert_at = after_title
    if delimiter and header.startswith(delimiter, insert_at):
        insert_at += len(delimiter)
    return header[:insert_at] + length + header[insert_at:]


class HttpRequest:
    """Mutable request state serialized on demand."""

    def __init__(
        self,
        settings: Optional[ProbeSettings] = None,
        method: Optional[Union[HttpMethod, str]] = None,
        resource_path: Optional[str] = "",
        query: SourceInput = None,
        header: SourceInput = None,
        body: Optional[str] = "",
    ) -> None:
        self.settings = settings or ProbeSettings()
        self.method = method
        self.resource_path = resource_path or ""
        self.body = body or ""
        self._header: Source = None
        self._query: Source = None
        self.set_header(header)
        self.set_query(query)

    @property
    def method(self) -> Optional[HttpMethod]:
        return self._method

    @method.setter
    def method(self, value: Optional[Union[HttpMethod, str]]) -> None:
        self._method = None if value is None else HttpMethod.parse(value)

    @property
    def header_source(self) -> Source:
        return self._header

    @property
    def query_source(self) -> Source:
        return self._query

    def set_header(self, header: SourceInput) -> None:
        """Replace the header source; ``None`` reverts to the configured default."""

        self._header = coerce_source(header)

    def set_query(self, query: SourceInput) -> None:
        self._query = coerce_source(query)

    def _resolve(self, source: Source, default: object) -> Source:
        if source is not None:
            return source
        return coerce_source(default)  # type: ignore[arg-type]

    @property
    def header_text(self) -> str:
        source = self._resolve(self._header, self.settings.default_header)
        if isinstance(source, RawText):
            return source.text
        if isinstance(source, Pairs):
            return render_header(source.items, self.settings)
        return ""

    @property
    def query_text(self) -> str:
        source = self._resolve(self._query, self.settings.default_query)
        if isinstance(source, RawText):
            return source.text
        if isinstance(source, Pairs):
            return render_query(source.items, self.settings)
        return ""

    def header_as_list(self) -> ItemList:
        """Split the header text back into pairs.

        The empty segment after a trailing terminator is skipped and, when a
        space follows the delimiter by configuration, that single space is
        removed so a pair list survives a list/text/list round trip.
        """

        settings = self.settings
        items = ItemList()
        text = self.header_text
        if not text:
            return items
        segments = text.split(settings.header_line_terminator)
        if segments and segments[-1] == "":
            segments.pop()
        for segment in segments:
            key, _, value = segment.partition(settings.header_item_delimiter)
            if settings.space_after_header_delimiter and value.startswith(" "):
                value = value[1:]
            items.add(key, value)
        return items

    def header_as_string(self) -> str:
        top_line = self.build_top_line()
        prefix = top_line + self.settings.header_line_terminator if top_line else ""
        return prefix + self.header_text

    def query_as_list(self) -> ItemList:
        settings = self.settings
        items = ItemList()
        text = self.query_text
        if not text:
            return items
        for segment in text.split(settings.query_parameter_separator):
            key, _, value = segment.partition(settings.query_name_value_separator)
            items.add(key, value)
        return items

    def query_as_string(self) -> str:
        return self.query_text

    def method_token(self) -> str:
        if self.method is HttpMethod.POST:
            return self.settings.post_token
        if self.method is HttpMethod.GET:
            return self.settings.get_token
        raise ConfigurationError(
            f"HTTP method {self.method.value if self.method else None} cannot be serialized. "
            "Must be POST or GET; others are not yet implemented"
        )

    def build_top_line(self) -> str:
        """Return the request line, or an empty string when no method is set."""

        if self.method is None:
            return ""
        settings = self.settings
        query = self.query_text
        query_part = f"{settings.query_separator}{query}" if query else ""
        return f"{self.method_token()} {self.resource_path}{query_part} {settings.http_version}"

    def serialize(self, patch_content_length: bool = False) -> str:
        """Return the exact text to transmit.

        With ``patch_content_length`` the Content-Length header is added or
        overwritten with ``len(body)`` and the patched text replaces the
        header source.
        """

        settings = self.settings
        top_line = self.build_top_line()
        header = self.header_text

        if patch_content_length:
            header = _patch(header, len(self.body), settings)
            LOGGER.debug("Content-Length set to %s", len(self.body))
            self._header = RawText(header)

        prefix = top_line + settings.header_line_terminator if top_line else ""
        tail = self.body if self.body else settings.header_body_delimiter
        return prefix + header + settings.header_body_delimiter + tail

    def __str__(self) -> str:
        return self.serialize(False)


def _patch(header: str, body_length: int, settings: ProbeSettings) -> str:
    return patch_content_length(
        header,
        body_length,
        title=settings.content_length_title,
        delimiter=settings.header_item_delimiter,
        line_terminator=settings.header_line_terminator,
        space_after_delimiter=settings.space_after_header_delimiter,
    )


__all__ = [
    "HttpMethod",
    "HttpRequest",
    "Pairs",
    "RawText",
    "coerce_source",
    "patch_content_length",
    "render_header",
    "render_query",
]
