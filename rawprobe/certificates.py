"""Client certificates and the server certificate acceptance policy.

Server certificates are never checked cryptographically.  The TLS context
is built without verification and, once the handshake completes, a single
validation callable decides whether the exchange may continue.  Either the
caller supplies that callable, or :class:`MockCertificateValidator` returns
the configured accept/reject flag.
"""

from __future__ import annotations

import enum
import logging
import ssl
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cryptography import x509

LOGGER = logging.getLogger(__name__)


class PolicyErrors(enum.Flag):
    """Informational problems observed with the peer certificate."""

    NONE = 0
    REMOTE_CERTIFICATE_NOT_AVAILABLE = 1
    REMOTE_CERTIFICATE_NAME_MISMATCH = 2
    REMOTE_CERTIFICATE_CHAIN_ERRORS = 4


ValidationCallback = Callable[[Optional[bytes], Optional[Sequence[object]], PolicyErrors], bool]


@dataclass(frozen=True)
class ClientCertificate:
    """Certificate chain presented to the server during the handshake."""

    certfile: Path
    keyfile: Optional[Path] = None
    password: Optional[str] = None

    def load_into(self, context: ssl.SSLContext) -> None:
        context.load_cert_chain(
            certfile=str(self.certfile),
            keyfile=str(self.keyfile) if self.keyfile else None,
            password=self.password,
        )


def describe_certificate(certificate: Optional[bytes]) -> tuple[str, str]:
    """Return ``(subject, issuer)`` of a DER certificate for logging."""

    if not certificate:
        return "<none>", "<none>"
    try:
        parsed = x509.load_der_x509_certificate(certificate)
    except ValueError:
        return "<unparsable>", "<unparsable>"
    return parsed.subject.rfc4514_string(), parsed.issuer.rfc4514_string()


class MockCertificateValidator:
    """Accept or reject every server certificate based on one flag."""

    def __init__(self, accept: bool = True, transcript: Optional[logging.Logger] = None) -> None:
        self.accept = accept
        self.transcript = transcript

    def validate(
        self,
        certificate: Optional[bytes],
        chain: Optional[Sequence[object]],
        policy_errors: PolicyErrors,
    ) -> bool:
        subject, issuer = describe_certificate(certificate)
        decision = "Accepting" if self.accept else "Rejecting as accept_server_certificate is false"
        LOGGER.debug("Server certificate subject=%s issuer=%s: %s", subject, issuer, decision)
        if self.transcript is not None:
            self.transcript.info(
                "Server Certificate Validation (Subject: %s, Issuer: %s). %s",
                subject,
                issuer,
                decision,
            )
        return self.accept

    __call__ = validate


def resolve_validator(
    callback: Optional[ValidationCallback],
    accept: bool,
    transcript: Optional[logging.Logger] = None,
) -> ValidationCallback:
    """Return the external callback when given, otherwise the mock policy."""

    if callback is not None:
        return callback
    return MockCertificateValidator(accept, transcript)


__all__ = [
    "ClientCertificate",
    "MockCertificateValidator",
    "PolicyErrors",
    "ValidationCallback",
    "describe_certificate",
    "resolve_validator",
]
