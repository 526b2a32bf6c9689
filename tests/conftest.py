import os
import socket
import socketserver
import ssl
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nConnection: close\r\n\r\nhello"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    for name in list(os.environ):
        if name.startswith("RAWPROBE_"):
            monkeypatch.delenv(name, raising=False)
    yield


def _read_request(sock: socket.socket) -> bytes:
    """Read the request head, then whatever else arrives shortly after."""

    data = b""
    try:
        sock.settimeout(2.0)
        while b"\r\n\r\n" not in data:
            chunk = sock.recv(4096)
            if not chunk:
                return data
            data += chunk
        sock.settimeout(0.1)
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            data += chunk
    except OSError:
        pass
    return data


class CannedHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        server: CannedServer = self.server  # type: ignore[assignment]
        data = _read_request(self.request)
        server.received.append(data)
        if not data:
            return
        if server.response is None:
            server.release.wait(5.0)
            return
        self.request.sendall(server.response)


class CannedServer(socketserver.ThreadingTCPServer):
    """Replies to every connection with ``response`` and closes it.

    With ``response`` set to ``None`` the connection is held open without
    a reply until the fixture is torn down.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, response: Optional[bytes] = DEFAULT_RESPONSE) -> None:
        super().__init__(("127.0.0.1", 0), CannedHandler)
        self.response = response
        self.received: list[bytes] = []
        self.release = threading.Event()

    @property
    def host(self) -> str:
        return self.server_address[0]

    @property
    def port(self) -> int:
        return self.server_address[1]


class TlsCannedServer(CannedServer):
    def __init__(self, context: ssl.SSLContext, response: Optional[bytes] = DEFAULT_RESPONSE) -> None:
        super().__init__(response)
        self.context = context

    def get_request(self):
        sock, address = super().get_request()
        try:
            return self.context.wrap_socket(sock, server_side=True), address
        except (ssl.SSLError, OSError):
            sock.close()
            raise


def _serve(server: CannedServer):
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def canned_server():
    server = CannedServer()
    _serve(server)
    yield server
    server.release.set()
    server.shutdown()
    server.server_close()


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(scope="session")
def self_signed_certificate(tmp_path_factory) -> tuple[Path, Path]:
    folder = tmp_path_factory.mktemp("keys")
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "RawProbe Tests"),
            x509.NameAttribute(NameOID.COMMON_NAME, "localhost"),
        ]
    )
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False)
        .sign(key, hashes.SHA256())
    )
    key_path = folder / "localhost.key"
    cert_path = folder / "localhost.crt"
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    return cert_path, key_path


@pytest.fixture
def tls_server(self_signed_certificate):
    cert_path, key_path = self_signed_certificate
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(cert_path), str(key_path))
    server = TlsCannedServer(context)
    _serve(server)
    yield server
    server.release.set()
    server.shutdown()
    server.server_close()
