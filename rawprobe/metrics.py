"""Prometheus metrics for RawProbe exchanges."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

LOGGER = logging.getLogger(__name__)

_REGISTRY = CollectorRegistry()


def _histogram(name: str, documentation: str, *, buckets: Iterable[float]) -> Histogram:
    return Histogram(name, documentation, buckets=tuple(buckets), registry=_REGISTRY)


def _counter(name: str, documentation: str, *, label_names: Optional[Iterable[str]] = None) -> Counter:
    if label_names:
        return Counter(name, documentation, labelnames=list(label_names), registry=_REGISTRY)
    return Counter(name, documentation, registry=_REGISTRY)


EXCHANGES = _counter(
    "rawprobe_exchanges_total",
    "Number of raw TCP exchanges grouped by outcome.",
    label_names=["outcome"],
)
EXCHANGE_DURATION = _histogram(
    "rawprobe_exchange_duration_seconds",
    "Histogram of send plus receive time for completed exchanges.",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60),
)
DECODES = _counter(
    "rawprobe_decode_total",
    "Number of decoded responses grouped by decoder result.",
    label_names=["result"],
)


def record_exchange_completed(host: str, duration: float) -> None:
    """Record metrics when a send/receive completes."""

    LOGGER.debug(
        "metrics.exchange_completed",
        extra={"event": "exchange.completed", "host": host, "duration": duration},
    )
    EXCHANGES.labels(outcome="completed").inc()
    EXCHANGE_DURATION.observe(duration)


def record_exchange_failed(host: str, reason: str) -> None:
    """Record metrics when an exchange fails at the transport layer."""

    LOGGER.debug(
        "metrics.exchange_failed",
        extra={"event": "exchange.failed", "host": host, "reason": reason},
    )
    EXCHANGES.labels(outcome=reason).inc()


def record_decode(result: str) -> None:
    DECODES.labels(result=result).inc()


def metrics_payload() -> tuple[bytes, str]:
    """Return the Prometheus metrics payload for HTTP responses."""

    return generate_latest(_REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "metrics_payload",
    "record_decode",
    "record_exchange_completed",
    "record_exchange_failed",
]
