"""Single-shot TCP/TLS transport for RawProbe.

Each call opens one connection, optionally upgrades it to TLS, writes the
request text in full, reads until the server closes the connection and
closes everything again.  Keep-alive is not supported: a server that leaves
the connection open after responding runs into the receive timeout.
"""

from __future__ import annotations

import logging
import socket
import ssl
import time
import warnings
from collections.abc import Iterable
from typing import Optional

from .certificates import (
    ClientCertificate,
    PolicyErrors,
    ValidationCallback,
    resolve_validator,
)
from .config import ALL_TLS_VERSIONS, ConfigurationError, ProbeSettings
from .logging_utils import open_transcript
from .metrics import record_exchange_completed, record_exchange_failed

LOGGER = logging.getLogger(__name__)

RECEIVE_BUFFER_SIZE = 65536

_TLS_VERSION_ORDER = (
    ssl.TLSVersion.TLSv1,
    ssl.TLSVersion.TLSv1_1,
    ssl.TLSVersion.TLSv1_2,
    ssl.TLSVersion.TLSv1_3,
)

# Only versions strictly between two requested ones can be a gap.
_TLS_DISABLE_OPTIONS = {
    ssl.TLSVersion.TLSv1_1: ssl.OP_NO_TLSv1_1,
    ssl.TLSVersion.TLSv1_2: ssl.OP_NO_TLSv1_2,
}


class TransportError(RuntimeError):
    """Raised when the TCP/TLS exchange cannot be completed."""

    def __init__(
        self,
        message: str,
        *,
        elapsed: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.elapsed = elapsed
        self.timeout = timeout


class ConnectError(TransportError):
    """The TCP connection could not be opened."""


class TlsHandshakeError(TransportError):
    """The TLS handshake failed."""


class CertificateRejectedError(TransportError):
    """The validation policy refused the server certificate."""


class SendError(TransportError):
    """Writing the request failed with an I/O error."""


class SendTimeoutError(SendError):
    """Writing the request did not finish within the send timeout."""


class ReceiveError(TransportError):
    """Reading the response failed with an I/O error."""


class ReceiveTimeoutError(ReceiveError):
    """The server did not close the connection within the receive timeout."""


def format_duration(seconds: float) -> str:
    """Render ``seconds`` as ``"[N Mins, ]S Seconds"``."""

    minutes, remainder = divmod(int(seconds), 60)
    if minutes:
        return f"{minutes} Mins, {remainder} Seconds"
    return f"{remainder} Seconds"


def build_tls_context(
    tls_versions: Iterable[ssl.TLSVersion] = ALL_TLS_VERSIONS,
    client_certificate: Optional[ClientCertificate] = None,
) -> ssl.SSLContext:
    """Return a client context with verification switched off.

    Exactly the requested versions are offered: the context spans the
    lowest to the highest one and any version missing in between is
    switched off with its ``OP_NO_*`` option.  Old protocol versions are
    requested on purpose here, so the interpreter's deprecation warnings
    for them are silenced.
    """

    versions = sorted(set(tls_versions))
    if not versions:
        raise ConfigurationError("At least one TLS version must be enabled")
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    gaps = [
        version
        for version in _TLS_VERSION_ORDER
        if versions[0] < version < versions[-1] and version not in versions
    ]
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", DeprecationWarning)
            context.minimum_version = versions[0]
            context.maximum_version = versions[-1]
            for version in gaps:
                context.options |= _TLS_DISABLE_OPTIONS[version]
    except ValueError as exc:
        raise ConfigurationError(f"TLS versions {[v.name for v in versions]} are not supported here: {exc}") from exc
    if gaps:
        LOGGER.debug("TLS versions %s disabled inside the requested range", [version.name for version in gaps])
    if client_certificate is not None:
        client_certificate.load_into(context)
    return context


def _connect(host: str, port: int, timeout: float) -> socket.socket:
    try:
        return socket.create_connection((host, port), timeout=timeout)
    except OSError as exc:
        record_exchange_failed(host, "connect")
        raise ConnectError(f"Unable to connect to {host}:{port}: {exc}") from exc


def _wrap_tls(sock: socket.socket, host: str, port: int, context: ssl.SSLContext) -> ssl.SSLSocket:
    try:
        return context.wrap_socket(sock, server_hostname=host)
    except (ssl.SSLError, OSError) as exc:
        record_exchange_failed(host, "tls")
        raise TlsHandshakeError(f"TLS handshake with {host}:{port} failed: {exc}") from exc


def _check_server_certificate(
    stream: ssl.SSLSocket,
    host: str,
    validator: ValidationCallback,
) -> None:
    certificate = stream.getpeercert(binary_form=True)
    chain_getter = getattr(stream, "get_unverified_chain", None)
    chain = chain_getter() if chain_getter is not None else None
    errors = PolicyErrors.NONE if certificate else PolicyErrors.REMOTE_CERTIFICATE_NOT_AVAILABLE
    if not validator(certificate, chain, errors):
        record_exchange_failed(host, "certificate_rejected")
        raise CertificateRejectedError(f"Server certificate from {host} rejected by validation policy")


def _write(stream: socket.socket, host: str, payload: bytes, timeout: float) -> float:
    stream.settimeout(timeout)
    started = time.perf_counter()
    try:
        stream.sendall(payload)
    except OSError as exc:
        elapsed = time.perf_counter() - started
        timed_out = isinstance(exc, TimeoutError) or elapsed >= timeout
        text = (
            f"{'Timeout s' if timed_out else 'S'}ending TCP data, after {format_duration(elapsed)} "
            f"(Timeout {format_duration(timeout)})"
        )
        LOGGER.error("%s: %s", text, exc)
        record_exchange_failed(host, "send_timeout" if timed_out else "send_error")
        error_type = SendTimeoutError if timed_out else SendError
        raise error_type(f"{text}: {exc}", elapsed=elapsed, timeout=timeout) from exc
    return time.perf_counter() - started


def _read(stream: socket.socket, host: str, timeout: float) -> tuple[bytes, float]:
    started = time.perf_counter()
    deadline = started + timeout
    chunks: list[bytes] = []
    try:
        while True:
            remaining = deadline - time.perf_counter()
            if remaining <= 0:
                raise socket.timeout("timed out")
            stream.settimeout(remaining)
            data = stream.recv(RECEIVE_BUFFER_SIZE)
            if not data:
                break
            chunks.append(data)
    except OSError as exc:
        elapsed = time.perf_counter() - started
        timed_out = isinstance(exc, TimeoutError) or elapsed >= timeout
        text = (
            f"{'Timeout w' if timed_out else 'W'}aiting for TCP response, after {format_duration(elapsed)} "
            f"(Timeout {format_duration(timeout)})"
        )
        LOGGER.error("%s: %s", text, exc)
        record_exchange_failed(host, "receive_timeout" if timed_out else "receive_error")
        error_type = ReceiveTimeoutError if timed_out else ReceiveError
        raise error_type(f"{text}: {exc}", elapsed=elapsed, timeout=timeout) from exc
    return b"".join(chunks), time.perf_counter() - started


def _exchange(
    stream: socket.socket,
    host: str,
    payload: bytes,
    send_timeout: float,
    receive_timeout: float,
    transcript: Optional[logging.Logger],
) -> bytes:
    send_time = _write(stream, host, payload, send_timeout)
    data, receive_time = _read(stream, host, receive_timeout)
    record_exchange_completed(host, send_time + receive_time)
    if transcript is not None:
        transcript.info(
            "Transaction completed. Send %s. Response %s.",
            format_duration(send_time),
            format_duration(receive_time),
        )
    return data


def send(
    request_text: str,
    *,
    host: str,
    port: int,
    use_tls: bool = False,
    tls_versions: Iterable[ssl.TLSVersion] = ALL_TLS_VERSIONS,
    client_certificate: Optional[ClientCertificate] = None,
    validator: Optional[ValidationCallback] = None,
    send_timeout: float = 10.0,
    receive_timeout: float = 10.0,
    encoding: str = "utf-8",
    transcript: Optional[logging.Logger] = None,
) -> str:
    """Send ``request_text`` to ``host:port`` and return the raw response.

    Timeouts are in seconds.  The socket (and TLS session) is closed on
    every exit path.
    """

    if transcript is not None:
        transcript.info(
            "%s:%s Send Timeout: %s, Receive Timeout: %s:",
            host,
            port,
            round(send_timeout),
            round(receive_timeout),
        )
        transcript.info("%s", request_text)

    payload = request_text.encode(encoding, errors="surrogateescape")
    context = build_tls_context(tls_versions, client_certificate) if use_tls else None
    if validator is None:
        validator = resolve_validator(None, True, transcript)

    LOGGER.debug("Connecting to %s:%s (tls=%s)", host, port, use_tls)
    with _connect(host, port, send_timeout) as sock:
        if context is None:
            data = _exchange(sock, host, payload, send_timeout, receive_timeout, transcript)
        else:
            with _wrap_tls(sock, host, port, context) as wrapped:
                if transcript is not None:
                    transcript.info("Negotiated %s with %s:%s", wrapped.version(), host, port)
                _check_server_certificate(wrapped, host, validator)
                data = _exchange(wrapped, host, payload, send_timeout, receive_timeout, transcript)

    LOGGER.debug("Received %d bytes from %s:%s", len(data), host, port)
    return data.decode(encoding, errors="replace")


class TcpTransport:
    """Transport bound to one :class:`ProbeSettings` instance."""

    def __init__(
        self,
        settings: Optional[ProbeSettings] = None,
        transcript: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings or ProbeSettings()
        if transcript is None:
            transcript = open_transcript(self.settings.transcript_file, redact=self.settings.redact_transcript)
        self.transcript = transcript

    def send(
        self,
        host: str,
        port: int,
        request_text: str,
        *,
        use_tls: bool = False,
        client_certificate: Optional[ClientCertificate] = None,
        validation_callback: Optional[ValidationCallback] = None,
    ) -> str:
        settings = self.settings
        validator = resolve_validator(
            validation_callback,
            settings.accept_server_certificate,
            self.transcript,
        )
        if use_tls and self.transcript is not None:
            if validation_callback is None:
                policy = f"internally (accept_server_certificate={settings.accept_server_certificate})"
            else:
                policy = "by caller supplied callback"
            self.transcript.info(
                "Sending using TLS (%s). Certificate validation performed %s",
                ", ".join(sorted(version.name for version in settings.tls_versions)),
                policy,
            )
        return send(
            request_text,
            host=host,
            port=port,
            use_tls=use_tls,
            tls_versions=settings.tls_versions,
            client_certificate=client_certificate,
            validator=validator,
            send_timeout=settings.send_timeout,
            receive_timeout=settings.receive_timeout,
            encoding=settings.encoding,
            transcript=self.transcript,
        )


__all__ = [
    "CertificateRejectedError",
    "ConnectError",
    "ReceiveError",
    "ReceiveTimeoutError",
    "SendError",
    "SendTimeoutError",
    "TcpTransport",
    "TlsHandshakeError",
    "TransportError",
    "build_tls_context",
    "format_duration",
    "send",
]
