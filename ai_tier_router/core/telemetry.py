"""
Telemetry sinks for invocation events.

Sinks are fire-and-forget: the gateway never lets a sink failure change
the result of a call.
"""

import logging
from typing import List, Optional, Protocol

from ai_tier_router.storage.db import DEFAULT_DB_PATH
from ai_tier_router.storage.models import InvocationEvent
from ai_tier_router.storage.repository import insert_invocation_event

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    def emit(self, event: InvocationEvent) -> None:
        ...


class LoggingTelemetry:
    """Writes each event as one structured log line."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def emit(self, event: InvocationEvent) -> None:
        self.log.info(
            "invocation model=%s outcome=%s latency_ms=%.1f tokens=%d user=%s capability=%s",
            event.model,
            event.outcome,
            event.latency_ms,
            event.total_tokens,
            event.user_id,
            event.capability,
        )


class SqliteTelemetry:
    """Appends each event to the ``invocation_event`` table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def emit(self, event: InvocationEvent) -> None:
        insert_invocation_event(event, self.db_path)


class FanOutTelemetry:
    """Forwards events to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: List[TelemetrySink]):
        self.sinks = list(sinks)

    def emit(self, event: InvocationEvent) -> None:
        for sink in self.sinks:
            safe_emit(sink, event)


def safe_emit(sink: Optional[TelemetrySink], event: InvocationEvent) -> None:
    """Deliver an event, logging instead of raising if the sink fails."""
    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception:
        logger.exception("Telemetry sink %s failed for model %s", type(sink).__name__, event.model)
