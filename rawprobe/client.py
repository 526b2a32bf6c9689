"""High-level orchestration for RawProbe requests.

:class:`HttpClient` wires the request builder, the transport and the
response decoder together for each call.  Two usage styles are supported:

* explicit calls such as ``client.http_post(domain, path, query, header, body)``
* "configure then send": set ``domain``, ``resource_path``, ``header_list``
  and friends, then call ``client.post()``.

Every operation has a ``try_`` twin that returns ``(success, response)``
and keeps the exception in :attr:`HttpClient.try_exception` instead of
raising it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional, TypeVar, Union

from .certificates import ClientCertificate, ValidationCallback
from .config import ConfigurationError, ProbeSettings
from .items import ItemList
from .logging_utils import open_transcript, transcript_timestamp
from .request import HttpMethod, HttpRequest, SourceInput
from .response import decode_response
from .transport import TcpTransport

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

MethodInput = Union[HttpMethod, str]


class HttpClient:
    """Stateful facade over one request builder and one transport."""

    def __init__(
        self,
        settings: Optional[ProbeSettings] = None,
        *,
        transport: Optional[TcpTransport] = None,
    ) -> None:
        self.settings = settings or ProbeSettings()
        self.transcript = open_transcript(
            self.settings.transcript_file,
            redact=self.settings.redact_transcript,
        )
        if self.transcript is not None:
            self.transcript.info("RawProbe client instantiated at %s", transcript_timestamp())
            LOGGER.info("Writing RawProbe transactions to %s", self.settings.transcript_file)

        self.use_tls = False
        self.domain = ""
        self.client_certificate: Optional[ClientCertificate] = None
        self.certificate_validation_callback: Optional[ValidationCallback] = None

        self.request_raw: Optional[str] = None
        self.response_raw: Optional[str] = None
        self.try_exception: Optional[BaseException] = None

        self._request = HttpRequest(self.settings)
        self._transport = transport or TcpTransport(self.settings, self.transcript)

    # -- request state -----------------------------------------------------

    @property
    def request(self) -> HttpRequest:
        return self._request

    @property
    def method(self) -> Optional[HttpMethod]:
        return self._request.method

    @method.setter
    def method(self, value: Optional[MethodInput]) -> None:
        self._request.method = value

    @property
    def resource_path(self) -> str:
        return self._request.resource_path

    @resource_path.setter
    def resource_path(self, value: Optional[str]) -> None:
        self._request.resource_path = value or ""

    @property
    def query_list(self) -> ItemList:
        return self._request.query_as_list()

    @query_list.setter
    def query_list(self, value: SourceInput) -> None:
        self._request.set_query(value)

    @property
    def query_string(self) -> str:
        return self._request.query_as_string()

    @query_string.setter
    def query_string(self, value: Optional[str]) -> None:
        self._request.set_query(value)

    @property
    def header_list(self) -> ItemList:
        return self._request.header_as_list()

    @header_list.setter
    def header_list(self, value: SourceInput) -> None:
        self._request.set_header(value)

    @property
    def header_string(self) -> str:
        """Request line (when a method is set) followed by the header text."""

        return self._request.header_as_string()

    @header_string.setter
    def header_string(self, value: Optional[str]) -> None:
        self._request.set_header(value)

    @property
    def body(self) -> str:
        return self._request.body

    @body.setter
    def body(self, value: Optional[str]) -> None:
        self._request.body = value or ""

    @property
    def port(self) -> int:
        return self.settings.tls_port if self.use_tls else self.settings.http_port

    @property
    def scheme(self) -> str:
        return "https" if self.use_tls else "http"

    # -- throwing operations -----------------------------------------------

    def http(
        self,
        method: MethodInput,
        domain: str,
        resource_path: Optional[str] = "",
        query: SourceInput = None,
        header: SourceInput = None,
        body: Optional[str] = None,
        *,
        patch_content_length: bool = True,
    ) -> ItemList:
        """Build a one-off request from the arguments and send it."""

        request = HttpRequest(
            self.settings,
            method=method,
            resource_path=resource_path,
            query=query,
            header=header,
            body=body,
        )
        return self._perform(request, domain, patch_content_length)

    def http_get(
        self,
        domain: str,
        resource_path: Optional[str] = "",
        query: SourceInput = None,
        header: SourceInput = None,
        body: Optional[str] = None,
    ) -> ItemList:
        return self.http(HttpMethod.GET, domain, resource_path, query, header, body)

    def http_post(
        self,
        domain: str,
        resource_path: Optional[str] = "",
        query: SourceInput = None,
        header: SourceInput = None,
        body: Optional[str] = None,
    ) -> ItemList:
        return self.http(HttpMethod.POST, domain, resource_path, query, header, body)

    def send(
        self,
        method: Optional[MethodInput] = None,
        *,
        patch_content_length: bool = True,
    ) -> ItemList:
        """Send the configured request state to :attr:`domain`.

        ``method`` overrides the stored method.  With no method at all the
        request line is omitted and the header text is sent as the whole
        request head.
        """

        if method is not None:
            self._request.method = method
        return self._perform(self._request, self.domain, patch_content_length)

    def get(self) -> ItemList:
        return self.send(HttpMethod.GET)

    def post(self) -> ItemList:
        return self.send(HttpMethod.POST)

    def send_raw(self, request_text: str, domain: Optional[str] = None) -> ItemList:
        """Send ``request_text`` untouched and decode the reply."""

        target = self.domain if domain is None else domain
        self._check_domain(target, "RAW")
        return self._transmit(target, request_text)

    def decode(self, raw_text: Optional[str]) -> ItemList:
        self.response_raw = raw_text
        return decode_response(raw_text)

    # -- non-throwing operations -------------------------------------------

    def try_http(self, *args: object, **kwargs: object) -> tuple[bool, Optional[ItemList]]:
        return self._attempt(self.http, *args, **kwargs)

    def try_http_get(self, *args: object, **kwargs: object) -> tuple[bool, Optional[ItemList]]:
        return self._attempt(self.http_get, *args, **kwargs)

    def try_http_post(self, *args: object, **kwargs: object) -> tuple[bool, Optional[ItemList]]:
        return self._attempt(self.http_post, *args, **kwargs)

    def try_send(self, *args: object, **kwargs: object) -> tuple[bool, Optional[ItemList]]:
        return self._attempt(self.send, *args, **kwargs)

    def try_get(self) -> tuple[bool, Optional[ItemList]]:
        return self._attempt(self.get)

    def try_post(self) -> tuple[bool, Optional[ItemList]]:
        return self._attempt(self.post)

    def try_send_raw(self, *args: object, **kwargs: object) -> tuple[bool, Optional[ItemList]]:
        return self._attempt(self.send_raw, *args, **kwargs)

    def _attempt(self, operation: Callable[..., T], *args: object, **kwargs: object) -> tuple[bool, Optional[T]]:
        try:
            result = operation(*args, **kwargs)
        except Exception as exc:
            LOGGER.debug("Captured %s: %s", type(exc).__name__, exc)
            self.try_exception = exc
            return False, None
        self.try_exception = None
        return True, result

    # -- internals ---------------------------------------------------------

    def _perform(self, request: HttpRequest, domain: str, patch_content_length: bool) -> ItemList:
        label = request.method.value if request.method else "request"
        self._check_domain(domain, label)
        self._check_keep_alive(request, label)
        return self._transmit(domain, request.serialize(patch_content_length))

    def _transmit(self, domain: str, request_text: str) -> ItemList:
        self.request_raw = request_text
        self.response_raw = None
        LOGGER.debug("Sending %d characters to %s://%s:%s", len(request_text), self.scheme, domain, self.port)
        LOGGER.debug("Request text:\n%s", request_text)
        raw = self._transport.send(
            domain,
            self.port,
            request_text,
            use_tls=self.use_tls,
            client_certificate=self.client_certificate,
            validation_callback=self.certificate_validation_callback,
        )
        return self.decode(raw)

    @staticmethod
    def _check_domain(domain: Optional[str], label: str) -> None:
        if domain is None or not domain.strip():
            raise ConfigurationError(
                f"HTTP {label}: Invalid Domain. Expect xxx.xxx.xxx etc.. Have [{domain or ''}]"
            )

    def _check_keep_alive(self, request: HttpRequest, label: str) -> None:
        keep_alive = any(
            key.strip().lower() == "connection" and value.strip().lower() == "keep-alive"
            for key, value in request.header_as_list()
        )
        if not keep_alive:
            return
        message = (
            f"HTTP {label} with a 'Connection: keep-alive' header. Only connections closed by the "
            "server are supported, so this will end in a receive timeout"
        )
        if self.settings.reject_keep_alive:
            raise ConfigurationError(message)
        LOGGER.warning(message)


__all__ = ["HttpClient"]
