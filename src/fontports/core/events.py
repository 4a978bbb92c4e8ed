from __future__ import annotations

import json
import os
import sys
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterator, List, Optional

DEFAULT_SCHEMA_VERSION = "1.0"

# Optional global bus so any stage can publish without threading the bus through signatures
_GLOBAL_BUS: Optional["EventBus"] = None


def set_global_bus(bus: Optional["EventBus"]) -> None:
    global _GLOBAL_BUS
    _GLOBAL_BUS = bus


def publish_event(stage: str, status: str, **fields: Any) -> None:
    """Send a lifecycle event to the global bus, if one is set.

    ``fields`` are FunctionalEvent attributes (counts, details, error).
    Bus failures never reach the caller.
    """
    bus = _GLOBAL_BUS
    if bus is None:
        return
    try:
        bus.publish(stage=stage, status=status, **fields)
    except Exception:
        pass


@contextmanager
def stage(name: str, **details: Any) -> Iterator[Dict[str, int]]:
    """Bracket one step of a run with started and completed/failed events.

    Yields a counts dict; whatever the step puts in it rides on the closing
    event. Durations are filled in by the bus from the started event.

    Usage:
        with stage("port.forward", port="outputFontFace") as counts:
            ...
            counts["events"] = forwarder.forwarded
    """
    counts: Dict[str, int] = {}
    publish_event(name, "started", details=details or None)
    try:
        yield counts
    except BaseException as exc:
        publish_event(
            name,
            "failed",
            counts=counts or None,
            details=details or None,
            error={"code": type(exc).__name__, "message": str(exc)},
        )
        raise
    publish_event(name, "completed", counts=counts or None, details=details or None)


@dataclass
class FunctionalEvent:
    """Structured lifecycle event for a run (flags.load, unit.init, port.subscribe, port.forward, run)."""

    schema_version: str = DEFAULT_SCHEMA_VERSION
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    seq_no: int = 0
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    run_id: str = "-"
    port: str = "-"

    stage: str = "-"
    status: str = "-"  # started|completed|failed

    duration_ms: Optional[int] = None
    counts: Optional[Dict[str, Any]] = None
    details: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


class EventObserver:
    """Observer interface for handling functional events."""

    def handle(self, event: FunctionalEvent) -> None:  # pragma: no cover
        raise NotImplementedError

    def flush(self) -> None:
        pass


class StderrObserver(EventObserver):
    """One-line progress rendering on stderr; stdout belongs to port output."""

    def __init__(self, stream=None):
        self._stream = stream

    def handle(self, event: FunctionalEvent) -> None:
        duration = f" duration_ms={event.duration_ms}" if event.duration_ms is not None else ""
        msg = f"{event.ts} | run={event.run_id} | port={event.port} | {event.stage} {event.status}{duration}"
        if event.counts:
            msg += f" | counts={event.counts}"
        if event.details:
            brief = {k: event.details[k] for k in list(event.details)[:4]}
            msg += f" | details={brief}"
        if event.error:
            msg += f" | error={event.error.get('code')}: {event.error.get('message')}"
        print(msg, file=self._stream if self._stream is not None else sys.stderr)


class JSONLObserver(EventObserver):
    """Buffers events in memory and writes them as JSONL on flush.

    Layout: <base_path>/<YYYY-MM-DD>/<run_id>.jsonl
    """

    def __init__(self, base_path: str, run_id: str, *, debug_errors: bool = False) -> None:
        self.debug_errors = debug_errors
        self._buf: List[str] = []
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        self.dir_path = os.path.join(base_path, date_str)
        self.file_path = os.path.join(self.dir_path, f"{run_id}.jsonl")

    def handle(self, event: FunctionalEvent) -> None:
        self._buf.append(json.dumps(asdict(event), ensure_ascii=False, default=str))

    def flush(self) -> None:
        if not self._buf:
            return
        try:
            os.makedirs(self.dir_path, exist_ok=True)
            with open(self.file_path, "a", encoding="utf-8") as f:
                f.write("\n".join(self._buf) + "\n")
            self._buf.clear()
        except OSError as e:
            if self.debug_errors:
                print(f"[JSONLObserver] flush failed: {type(e).__name__}: {e}", file=sys.stderr)


class EventBus:
    """Event bus with a background dispatcher thread and a bounded queue.

    Publishing never blocks: when the queue is full the event is dropped and
    counted. Paired started/completed events get their duration filled in.
    """

    def __init__(
        self,
        *,
        run_id: str,
        port: str = "-",
        observers: Optional[List[EventObserver]] = None,
        queue_size: int = 10_000,
    ) -> None:
        self.run_id = str(run_id)
        self.port = port
        self._observers: List[EventObserver] = observers or []
        self._q: Queue[FunctionalEvent] = Queue(maxsize=max(1, queue_size))
        self._seq_no = 0
        self._running = False
        self._worker: Optional[threading.Thread] = None
        self.dropped = 0
        self._stage_start_times: Dict[str, int] = {}

    def _deliver(self, evt: FunctionalEvent) -> None:
        for obs in self._observers:
            try:
                obs.handle(evt)
            except Exception:
                # Isolate observer failures
                pass

    def _dispatch_loop(self) -> None:
        while self._running:
            try:
                evt = self._q.get(timeout=0.2)
            except Empty:
                continue
            self._deliver(evt)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._worker = threading.Thread(target=self._dispatch_loop, name="fontports_event_bus", daemon=True)
        self._worker.start()

    def shutdown(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._worker is not None and self._worker.is_alive():
            self._worker.join(timeout=2.0)
        while True:
            try:
                evt = self._q.get_nowait()
            except Empty:
                break
            self._deliver(evt)
        for obs in self._observers:
            try:
                obs.flush()
            except Exception:
                pass
        self._worker = None

    def publish(
        self,
        *,
        stage: str,
        status: str,
        duration_ms: Optional[int] = None,
        counts: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> None:
        now_ms = int(time.time() * 1000)
        if status == "started":
            self._stage_start_times[stage] = now_ms
        elif status in ("completed", "failed") and duration_ms is None:
            start_ms = self._stage_start_times.pop(stage, None)
            if start_ms is not None:
                duration_ms = now_ms - start_ms

        self._seq_no += 1
        evt = FunctionalEvent(
            seq_no=self._seq_no,
            run_id=self.run_id,
            port=self.port,
            stage=stage,
            status=status,
            duration_ms=duration_ms,
            counts=counts,
            details=details,
            error=error,
        )
        try:
            self._q.put_nowait(evt)
        except Full:
            self.dropped += 1


def _env_flag(name: str, default: str) -> str:
    val = os.getenv(name)
    return val if val not in (None, "") else default


def build_default_bus(*, run_id: str, port: str = "-") -> Optional[EventBus]:
    """Construct an EventBus from environment variables, or None when disabled.

    FONTPORTS_EVENTS_ENABLED: "true" | "false" (default: "false")
    FONTPORTS_EVENTS_TRANSPORTS: comma list of stderr,jsonl (default: "stderr")
    FONTPORTS_EVENTS_PATH: base directory for jsonl (default: "logs/events")
    FONTPORTS_EVENTS_QUEUE_SIZE: int (default: 10000)
    FONTPORTS_EVENTS_DEBUG_ERRORS: "true" | "false" (default: "false")
    """
    if _env_flag("FONTPORTS_EVENTS_ENABLED", "false").lower() != "true":
        return None

    transports = [s.strip() for s in _env_flag("FONTPORTS_EVENTS_TRANSPORTS", "stderr").split(",") if s.strip()]
    try:
        q_size = int(_env_flag("FONTPORTS_EVENTS_QUEUE_SIZE", "10000"))
    except ValueError:
        q_size = 10000
    debug_errors = _env_flag("FONTPORTS_EVENTS_DEBUG_ERRORS", "false").lower() == "true"

    observers: List[EventObserver] = []
    if "stderr" in transports:
        observers.append(StderrObserver())
    if "jsonl" in transports:
        observers.append(JSONLObserver(
            base_path=_env_flag("FONTPORTS_EVENTS_PATH", "logs/events"),
            run_id=str(run_id),
            debug_errors=debug_errors,
        ))

    return EventBus(run_id=str(run_id), port=port, observers=observers, queue_size=q_size)
