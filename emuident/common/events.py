from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from emuident.common.exceptions import WorkflowCancelledError
from emuident.logging_cfg import get_logger

logger = get_logger("common.events")


@dataclass(slots=True)
class CoreEvent:
    """Base for every event emitted by the core."""
    event_type: str
    payload: dict[str, Any]


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    stage: str
    done: int
    total: Optional[int] = None
    message: str = ""
    finished: bool = False
    cancelled: bool = False

    @property
    def fraction(self) -> Optional[float]:
        if not self.total:
            return None
        return min(1.0, self.done / self.total)


ProgressListener = Callable[[ProgressEvent], None]


class EventBus:
    """Central event bus between the core and its front ends."""

    def __init__(self):
        self._subscribers: dict[str, list[Callable[[CoreEvent], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, callback: Callable[[CoreEvent], None]):
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: str, callback: Callable[[CoreEvent], None]):
        with self._lock:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def emit(self, event_type: str, **kwargs):
        event = CoreEvent(event_type=event_type, payload=kwargs)
        with self._lock:
            callbacks = list(self._subscribers.get(event_type, []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                # A broken subscriber must not stop the pipeline
                logger.warning("Event subscriber failed for %s", event_type, exc_info=True)


bus = EventBus()


class StageProgress:
    """Progress reporting for one pipeline stage.

    ``done`` only grows, events are delivered in order even when workers
    report concurrently, and the terminal event is sent exactly once.
    Usable as a context manager; leaving the block finishes the stage.
    """

    def __init__(
        self,
        stage: str,
        total: Optional[int] = None,
        listener: Optional[ProgressListener] = None,
        event_bus: Optional[EventBus] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.stage = stage
        self.total = total
        self._listener = listener
        self._bus = event_bus
        self._cancel_event = cancel_event
        self._lock = threading.Lock()
        self._done = 0
        self._finished = False

    @property
    def done(self) -> int:
        return self._done

    @property
    def finished(self) -> bool:
        return self._finished

    def _deliver(self, event: ProgressEvent):
        if self._listener is not None:
            try:
                self._listener(event)
            except Exception:
                logger.warning("Progress listener failed for %s", self.stage, exc_info=True)
        if self._bus is not None:
            self._bus.emit("progress", event=event)

    def start(self, total: Optional[int] = None, message: str = ""):
        with self._lock:
            if total is not None:
                self.total = total
            if self._finished:
                return
            self._deliver(ProgressEvent(self.stage, self._done, self.total, message))

    def advance(self, n: int = 1, message: str = ""):
        if n < 0:
            raise ValueError("progress cannot go backwards")
        with self._lock:
            if self._finished:
                return
            self._done += n
            self._deliver(ProgressEvent(self.stage, self._done, self.total, message))

    def finish(self, cancelled: bool = False, message: str = "") -> bool:
        """Send the terminal event. Returns False if it was already sent."""
        with self._lock:
            if self._finished:
                return False
            self._finished = True
            self._deliver(
                ProgressEvent(
                    self.stage,
                    self._done,
                    self.total,
                    message,
                    finished=True,
                    cancelled=cancelled,
                )
            )
            return True

    def __enter__(self) -> "StageProgress":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        cancelled = bool(self._cancel_event is not None and self._cancel_event.is_set())
        if exc_type is not None:
            cancelled = cancelled or issubclass(exc_type, WorkflowCancelledError)
        self.finish(cancelled=cancelled)
        return False
