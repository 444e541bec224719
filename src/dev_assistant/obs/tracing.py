"""Tracing of agent turns and tool calls."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from dev_assistant.types import ToolTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    session_id: str
    question: str
    answer: str
    sources: list[str]
    tool_traces: list[ToolTrace]
    iterations: int
    stop_reason: str
    latency_ms: float


class TraceStore:
    """In-memory trace storage for API-level observability.

    Keeps the most recent `max_records` turns; older ones are dropped first.
    """

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: dict[str, TraceRecord] = {}
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        session_id: str,
        question: str,
        answer: str,
        sources: list[str],
        tool_traces: list[ToolTrace],
        iterations: int,
        stop_reason: str,
        latency_ms: float,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            question=question,
            answer=answer,
            sources=sources,
            tool_traces=tool_traces,
            iterations=iterations,
            stop_reason=stop_reason,
            latency_ms=latency_ms,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> TraceRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate latency, iteration and tool-usage figures."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_iterations": 0.0,
                "total_tool_calls": 0,
                "tool_errors": 0,
                "reranked_turns": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        traces = [trace for record in records for trace in record.tool_traces]
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_iterations": sum(record.iterations for record in records) / total,
            "total_tool_calls": len(traces),
            "tool_errors": sum(1 for trace in traces if trace.error),
            "reranked_turns": sum(1 for record in records if record.stop_reason == "reranked"),
        }


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
