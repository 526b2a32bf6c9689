"""RawProbe package providing a raw HTTP/TCP client for negative testing."""

from __future__ import annotations

__all__ = ["__version__"]

# Semantic version for package consumers.
__version__ = "0.1.0"
