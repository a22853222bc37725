"""Structured pipeline events.

Every stage start/complete/fail and every retry is written through the
standard logging module. Callers that want to watch runs live can also pass
a PipelineEventLog: a bounded in-memory buffer they own and read from.
The orchestrator only appends; it never reads events back.
"""

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

EventKind = Literal["start", "complete", "fail", "retry"]


class PipelineEvent(BaseModel):
    run_id: str
    event: EventKind
    stage: Optional[str] = None
    duration_ms: Optional[int] = None
    summary: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PipelineEventLog:
    """Bounded, append-only event buffer shared by concurrent runs."""

    def __init__(self, max_events: int = 1000):
        self._events: deque[PipelineEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def append(self, event: PipelineEvent) -> None:
        with self._lock:
            self._events.append(event)

    def events(self, run_id: Optional[str] = None) -> list[PipelineEvent]:
        """Snapshot of buffered events, optionally for one run only."""
        with self._lock:
            snapshot = list(self._events)
        if run_id is None:
            return snapshot
        return [e for e in snapshot if e.run_id == run_id]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class RunLogger:
    """Emits events for one run to the logger and the optional event log."""

    def __init__(self, run_id: str, sink: Optional[PipelineEventLog] = None):
        self.run_id = run_id
        self.sink = sink

    def emit(
        self,
        event: EventKind,
        stage: Optional[str] = None,
        duration_ms: Optional[int] = None,
        summary: Optional[str] = None,
    ) -> None:
        parts = [f"[{self.run_id}]", event]
        if stage:
            parts.append(stage)
        if duration_ms is not None:
            parts.append(f"{duration_ms}ms")
        if summary:
            parts.append(f"- {summary}")
        level = logging.ERROR if event == "fail" else (
            logging.WARNING if event == "retry" else logging.INFO
        )
        logger.log(level, " ".join(parts))

        if self.sink is None:
            return
        try:
            self.sink.append(PipelineEvent(
                run_id=self.run_id,
                event=event,
                stage=stage,
                duration_ms=duration_ms,
                summary=summary,
            ))
        except Exception as e:
            logger.warning(f"[{self.run_id}] Event sink append failed: {e}")
