"""
abac_policy/audit.py

Decision audit delivery.

The engine hands one DecisionRecord per evaluate() call to an injected sink.
Delivery is fire-and-forget: a failing sink is logged and never changes the
decision. Retry/backoff, if any, belongs to the sink.
"""

import queue
import threading
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, List, Optional

from .log import log_decision, log_structured
from .types import Decision, DecisionRecord, DecisionRequest, Effect


class AuditSink(ABC):
    """Receives decision records."""

    @abstractmethod
    def emit(self, record: DecisionRecord) -> None:
        ...

    def close(self) -> None:
        """Release resources. Default: nothing to do."""


class LogAuditSink(AuditSink):
    """Writes each record as a structured JSON log line."""

    def emit(self, record: DecisionRecord) -> None:
        log_structured("info", "Decision record", event_type="DECISION_RECORD", **record.model_dump(mode="json"))


class MemoryAuditSink(AuditSink):
    """Keeps the most recent records in memory (tests, local replay)."""

    def __init__(self, max_records: int = 10000):
        self._records: Deque[DecisionRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def emit(self, record: DecisionRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[DecisionRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


_STOP = object()


class QueueAuditSink(AuditSink):
    """Hands records to a background worker so emit() never blocks.

    Records are dropped (with a warning log) when the queue is full.
    """

    def __init__(self, delegate: AuditSink, maxsize: int = 1000):
        self._delegate = delegate
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0
        self._worker = threading.Thread(target=self._run, name="abac-audit", daemon=True)
        self._worker.start()

    def emit(self, record: DecisionRecord) -> None:
        if self._closed:
            self._drop(record, "sink closed")
            return
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._drop(record, "queue full")

    def flush(self) -> None:
        """Block until every queued record has been handed to the delegate."""
        self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            log_decision(
                "warning", "Audit worker did not drain before close",
                event_type="AUDIT_SINK_FAILED",
                pending=self._queue.qsize(),
            )
        else:
            self._worker.join(timeout)
        self._delegate.close()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                deliver(self._delegate, item)
            finally:
                self._queue.task_done()

    def _drop(self, record: DecisionRecord, why: str) -> None:
        self.dropped += 1
        log_decision(
            "warning", f"Audit record dropped: {why}",
            request_id=record.request_id,
            policy_id=record.matched_policy_id,
            event_type="AUDIT_RECORD_DROPPED",
        )


def build_record(
    request: DecisionRequest,
    decision: Optional[Decision],
    request_id: Optional[str] = None,
    error_code: Optional[str] = None,
    reason: Optional[str] = None,
) -> DecisionRecord:
    """Summarize one evaluate() call for the audit trail.

    A call that ended in an error is recorded as deny.
    """
    subject_id = request.subject.get("id")
    object_id = request.object.get("id")
    return DecisionRecord(
        timestamp=datetime.now(timezone.utc),
        subject_id=str(subject_id) if subject_id is not None else None,
        action=request.action,
        object_id=str(object_id) if object_id is not None else None,
        decision=decision.effect if decision is not None else Effect.DENY,
        matched_policy_id=decision.matched_policy_id if decision is not None else None,
        request_id=request_id,
        reason=reason if reason is not None else (decision.reason if decision is not None else ""),
        error_code=error_code,
    )


def deliver(sink: Optional[AuditSink], record: DecisionRecord) -> None:
    """Send a record to a sink; sink failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.emit(record)
    except Exception as e:
        log_decision(
            "error", "Audit sink failed",
            request_id=record.request_id,
            policy_id=record.matched_policy_id,
            event_type="AUDIT_SINK_FAILED",
            sink=type(sink).__name__,
            error=str(e),
        )
