"""Lightweight metrics helpers."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from time import perf_counter
from typing import Any, Dict, Iterator, Optional

from goalplanner.observability import tracing

logger = logging.getLogger(__name__)


def log_metric(name: str, value: float | int, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Record a metric as a short-lived Opik trace when tracing is enabled."""
    client = tracing.get_opik_client()
    if not client:
        return

    payload: Dict[str, Any] = {"value": value}
    if metadata:
        payload.update(metadata)

    try:
        metric_trace = client.trace(name=f"metric:{name}", metadata=payload)
        metric_trace.end()
    except Exception as exc:  # pragma: no cover - SDK failure
        logger.debug("Unable to record metric %s: %s", name, exc)


class _Outcome:
    def __init__(self) -> None:
        self.success = False
        self.extra: Dict[str, Any] = {}

    def mark_success(self, **extra: Any) -> None:
        self.success = True
        self.extra.update(extra)


@contextmanager
def record_latency(name: str, metadata: Optional[Dict[str, Any]] = None) -> Iterator[_Outcome]:
    """Emit ``<name>.success`` and ``<name>.latency_ms`` around a block.

    The block calls ``outcome.mark_success()``; anything else counts as failure.
    """
    outcome = _Outcome()
    start = perf_counter()
    try:
        yield outcome
    finally:
        latency_ms = (perf_counter() - start) * 1000
        payload = {**(metadata or {}), **outcome.extra}
        log_metric(f"{name}.success", 1 if outcome.success else 0, metadata=payload)
        log_metric(f"{name}.latency_ms", latency_ms, metadata=payload)
