"""Configuration helpers and .env loading for RawProbe."""

from __future__ import annotations

import dataclasses
import os
import ssl
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from .items import ItemList

DEFAULT_ENV_FILES: tuple[Path, ...] = (
    Path(".env"),
    Path("config/.env"),
)

ENV_PREFIX = "RAWPROBE_"

CRLF = "\r\n"

ALL_TLS_VERSIONS: frozenset[ssl.TLSVersion] = frozenset(
    {
        ssl.TLSVersion.TLSv1,
        ssl.TLSVersion.TLSv1_1,
        ssl.TLSVersion.TLSv1_2,
        ssl.TLSVersion.TLSv1_3,
    }
)

_TLS_VERSION_NAMES: Mapping[str, ssl.TLSVersion] = {
    "TLSV1": ssl.TLSVersion.TLSv1,
    "TLSV1_0": ssl.TLSVersion.TLSv1,
    "TLSV1_1": ssl.TLSVersion.TLSv1_1,
    "TLSV1_2": ssl.TLSVersion.TLSv1_2,
    "TLSV1_3": ssl.TLSVersion.TLSv1_3,
}

HeaderSource = Union[str, ItemList, None]


class ConfigurationError(ValueError):
    """Raised when settings or caller input cannot be used for a request."""


@lru_cache(maxsize=1)
def load_environment(*, extra_files: Iterable[Path] | None = None) -> dict[str, str]:
    """Load environment variables from .env files once per process."""

    candidates = list(DEFAULT_ENV_FILES)
    if extra_files:
        candidates = [*candidates, *extra_files]

    for path in candidates:
        try:
            if path.exists():
                load_dotenv(path, override=False)
        except OSError:
            continue

    load_dotenv(override=False)
    return dict(os.environ)


def parse_tls_versions(value: str) -> frozenset[ssl.TLSVersion]:
    """Parse a comma separated list such as ``TLSv1_2,TLSv1.3``."""

    versions: set[ssl.TLSVersion] = set()
    for token in value.split(","):
        name = token.strip().upper().replace(".", "_")
        if not name:
            continue
        if name not in _TLS_VERSION_NAMES:
            raise ConfigurationError(f"Unknown TLS version '{token.strip()}'")
        versions.add(_TLS_VERSION_NAMES[name])
    if not versions:
        raise ConfigurationError("At least one TLS version must be enabled")
    return frozenset(versions)


def _unescape(value: str) -> str:
    return value.replace("\\r", "\r").replace("\\n", "\n").replace("\\t", "\t")


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class ProbeSettings:
    """Every tunable used by the request builder, transport and facade."""

    send_timeout_ms: int = 10000
    receive_timeout_ms: int = 10000
    tls_versions: frozenset[ssl.TLSVersion] = ALL_TLS_VERSIONS
    tls_port: int = 443
    http_port: int = 80
    accept_server_certificate: bool = True
    header_item_delimiter: str = ":"
    space_after_header_delimiter: bool = True
    header_line_terminator: str = CRLF
    content_length_title: str = "Content-Length"
    header_body_delimiter: str = CRLF
    query_separator: str = "?"
    query_parameter_separator: str = "&"
    query_name_value_separator: str = "="
    post_token: str = "POST"
    get_token: str = "GET"
    http_version: str = "HTTP/1.1"
    default_header: HeaderSource = field(default_factory=ItemList)
    default_query: HeaderSource = field(default_factory=ItemList)
    transcript_file: Optional[Path] = None
    encoding: str = "utf-8"
    reject_keep_alive: bool = False
    redact_transcript: bool = True

    def __post_init__(self) -> None:
        if self.send_timeout_ms <= 0:
            raise ConfigurationError("send_timeout_ms must be positive")
        if self.receive_timeout_ms <= 0:
            raise ConfigurationError("receive_timeout_ms must be positive")
        for name in ("tls_port", "http_port"):
            port = getattr(self, name)
            if port <= 0 or port > 65535:
                raise ConfigurationError(f"{name} must be between 1 and 65535")
        self.tls_versions = frozenset(self.tls_versions)
        if not self.tls_versions:
            raise ConfigurationError("At least one TLS version must be enabled")
        for name in (
            "header_item_delimiter",
            "header_line_terminator",
            "content_length_title",
            "query_parameter_separator",
            "query_name_value_separator",
        ):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} must not be empty")
        for name in ("default_header", "default_query"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, (str, ItemList)):
                raise ConfigurationError(
                    f"{name} must be stored as an ItemList or string, not {type(value).__name__}"
                )
        if self.transcript_file is not None:
            self.transcript_file = Path(self.transcript_file)

    @property
    def send_timeout(self) -> float:
        return self.send_timeout_ms / 1000.0

    @property
    def receive_timeout(self) -> float:
        return self.receive_timeout_ms / 1000.0

    def replace(self, **overrides: object) -> "ProbeSettings":
        return dataclasses.replace(self, **overrides)

    def as_dict(self) -> dict[str, object]:
        return {
            "send_timeout_ms": self.send_timeout_ms,
            "receive_timeout_ms": self.receive_timeout_ms,
            "tls_versions": sorted(version.name for version in self.tls_versions),
            "tls_port": self.tls_port,
            "http_port": self.http_port,
            "accept_server_certificate": self.accept_server_certificate,
            "http_version": self.http_version,
            "transcript_file": str(self.transcript_file) if self.transcript_file else None,
            "encoding": self.encoding,
            "reject_keep_alive": self.reject_keep_alive,
            "redact_transcript": self.redact_transcript,
        }

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "ProbeSettings":
        """Build settings from ``RAWPROBE_*`` variables, falling back to defaults."""

        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for item in dataclasses.fields(cls):
            raw = env.get(ENV_PREFIX + item.name.upper())
            if raw is None:
                continue
            try:
                overrides[item.name] = _convert(item.name, raw)
            except ValueError as exc:
                if isinstance(exc, ConfigurationError):
                    raise
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX}{item.name.upper()}: {raw!r}"
                ) from exc
        return cls(**overrides)


_INT_FIELDS = {"send_timeout_ms", "receive_timeout_ms", "tls_port", "http_port"}
_BOOL_FIELDS = {
    "accept_server_certificate",
    "space_after_header_delimiter",
    "reject_keep_alive",
    "redact_transcript",
}


def _convert(name: str, raw: str) -> object:
    if name in _INT_FIELDS:
        return int(raw)
    if name in _BOOL_FIELDS:
        return _as_bool(raw)
    if name == "tls_versions":
        return parse_tls_versions(raw)
    if name == "transcript_file":
        return Path(raw) if raw.strip() else None
    return _unescape(raw)


__all__ = [
    "ALL_TLS_VERSIONS",
    "ConfigurationError",
    "DEFAULT_ENV_FILES",
    "ProbeSettings",
    "load_environment",
    "parse_tls_versions",
]
