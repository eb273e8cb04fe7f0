"""
Observability Layer — structured run events.

Every event is one JSON line on the ``observability`` logger, stamped with
the run id, the trace id shared by all runs of one engine, and the graph id.
The last events are also kept in memory for the CLI and tests.

Chat messages are the user-facing channel; this is the diagnostics channel.
"""

import json
import logging
import time
import uuid
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

logger = logging.getLogger("observability")

RECENT_EVENTS = 200


class Observability:
    """Structured event log for one workflow run."""

    def __init__(self, run_id: str | None = None, graph_id: str | None = None):
        self.run_id = run_id or f"run-{uuid.uuid4().hex[:12]}"
        self.graph_id = graph_id
        self.trace_id = uuid.uuid4().hex
        self.recent: deque[dict[str, Any]] = deque(maxlen=RECENT_EVENTS)

    def log_event(self, event_type: str, payload: dict[str, Any], level: str = "INFO") -> dict[str, Any]:
        record: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "level": level.upper(),
            "run_id": self.run_id,
            "trace_id": self.trace_id,
        }
        if self.graph_id:
            record["graph_id"] = self.graph_id
        record.update(payload)

        self.recent.append(record)
        logger.log(getattr(logging, level.upper(), logging.INFO), json.dumps(record, default=str, ensure_ascii=False))
        return record

    @contextmanager
    def measure(self, operation: str, metadata: dict[str, Any] | None = None) -> Iterator[None]:
        """Emit an ``execution_metric`` event with the block's duration and outcome."""
        started = time.perf_counter()
        outcome: dict[str, Any] = {"success": False, "error": "cancelled"}
        try:
            yield
        except Exception as exc:
            outcome["error"] = str(exc)
            raise
        else:
            outcome.update(success=True, error=None)
        finally:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            self.log_event(
                "execution_metric",
                {"operation": operation, "duration_ms": elapsed_ms, **outcome, **(metadata or {})},
            )

    def events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        return [record for record in self.recent if event_type is None or record["event"] == event_type]

    def for_run(self, run_id: str) -> "Observability":
        """Logger for a new run of the same graph; the trace id carries over."""
        child = Observability(run_id, graph_id=self.graph_id)
        child.trace_id = self.trace_id
        return child
