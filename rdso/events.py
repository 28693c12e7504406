from __future__ import annotations

import logging

from . import db
from .resources import EventSink, SpecRecord

logger = logging.getLogger(__name__)

NORMAL = "Normal"
WARNING = "Warning"


class EventRecorder:
    """Fire-and-forget notifications attached to a specification.

    Events go to the local journal and to every configured sink. A failing
    sink is logged and otherwise ignored: emitting must never fail a pass.
    """

    def __init__(self, *sinks: EventSink, journal: bool = True):
        self.sinks = list(sinks)
        self.journal = journal

    def emit(self, record: SpecRecord, event_type: str, reason: str, message: str) -> None:
        if self.journal:
            try:
                db.log_event(
                    "INFO" if event_type == NORMAL else "WARN",
                    message,
                    namespace=record.identity.namespace,
                    instance=record.identity.name,
                    reason=reason,
                )
            except Exception as e:
                logger.warning("Journal write failed for %s: %s: %s", record.identity, type(e).__name__, e)
        for sink in self.sinks:
            try:
                sink.emit(record, event_type, reason, message)
            except Exception as e:
                logger.warning("Event sink %s failed for %s: %s: %s", type(sink).__name__, record.identity, type(e).__name__, e)

    def normal(self, record: SpecRecord, reason: str, message: str) -> None:
        self.emit(record, NORMAL, reason, message)

    def warning(self, record: SpecRecord, reason: str, message: str) -> None:
        self.emit(record, WARNING, reason, message)
