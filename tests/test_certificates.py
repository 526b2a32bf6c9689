from __future__ import annotations

import logging
import ssl

import pytest

from rawprobe.certificates import (
    ClientCertificate,
    MockCertificateValidator,
    PolicyErrors,
    describe_certificate,
    resolve_validator,
)


def _der(cert_path) -> bytes:
    return ssl.PEM_cert_to_DER_cert(cert_path.read_text(encoding="ascii"))


def test_describe_certificate_reads_subject_and_issuer(self_signed_certificate):
    cert_path, _ = self_signed_certificate

    subject, issuer = describe_certificate(_der(cert_path))

    assert "CN=localhost" in subject
    assert "O=RawProbe Tests" in issuer


def test_describe_certificate_handles_missing_and_garbage():
    assert describe_certificate(None) == ("<none>", "<none>")
    assert describe_certificate(b"not a certificate") == ("<unparsable>", "<unparsable>")


@pytest.mark.parametrize("accept", [True, False])
def test_mock_validator_returns_configured_flag(accept, caplog):
    validator = MockCertificateValidator(accept)

    with caplog.at_level(logging.DEBUG, logger="rawprobe.certificates"):
        assert validator(None, None, PolicyErrors.REMOTE_CERTIFICATE_NOT_AVAILABLE) is accept

    assert "Server certificate subject=<none>" in caplog.text


def test_mock_validator_writes_transcript(self_signed_certificate):
    cert_path, _ = self_signed_certificate
    records: list[str] = []

    class _Collector(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record.getMessage())

    transcript = logging.getLogger("rawprobe.transcript.test-certificates")
    transcript.setLevel(logging.INFO)
    transcript.propagate = False
    handler = _Collector()
    transcript.addHandler(handler)
    try:
        MockCertificateValidator(False, transcript).validate(_der(cert_path), None, PolicyErrors.NONE)
    finally:
        transcript.removeHandler(handler)

    assert len(records) == 1
    assert records[0].startswith("Server Certificate Validation (Subject: ")
    assert records[0].endswith("Rejecting as accept_server_certificate is false")


def test_resolve_validator_prefers_callback():
    def callback(certificate, chain, errors):
        return False

    assert resolve_validator(callback, True) is callback
    fallback = resolve_validator(None, False)
    assert isinstance(fallback, MockCertificateValidator)
    assert fallback.accept is False


def test_client_certificate_loads_into_context(self_signed_certificate):
    cert_path, key_path = self_signed_certificate
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

    ClientCertificate(cert_path, key_path).load_into(context)


def test_client_certificate_with_missing_file_fails(tmp_path):
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

    with pytest.raises(OSError):
        ClientCertificate(tmp_path / "missing.pem").load_into(context)
