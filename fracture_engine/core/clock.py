# clock.py

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ScheduleHandle:
    """One periodic tick schedule for one subject"""
    subject_id: str
    interval_s: float
    callback: Callable[[], None]
    next_due: float
    handle_id: int
    cancelled: bool = False
    fire_count: int = 0
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)


class EngineClock(ABC):
    """
    Time source and tick scheduler injected into the engine.

    Scheduling only: the callback holds the business logic. A subject has at
    most one schedule, which keeps its ticks sequential.
    """

    def __init__(self):
        self._handles: Dict[str, ScheduleHandle] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds"""

    def schedule(self, subject_id: str, interval_s: float, callback: Callable[[], None]) -> ScheduleHandle:
        if interval_s <= 0:
            raise ValueError(f"Tick interval must be positive, got {interval_s}")
        with self._lock:
            existing = self._handles.get(subject_id)
        if existing is not None:
            self.cancel(existing)

        handle = ScheduleHandle(
            subject_id=subject_id,
            interval_s=interval_s,
            callback=callback,
            next_due=self.now() + interval_s,
            handle_id=next(self._ids),
        )
        with self._lock:
            self._handles[subject_id] = handle
        self._start(handle)
        logger.debug(f"Scheduled ticks for '{subject_id}' every {interval_s}s")
        return handle

    def cancel(self, handle: ScheduleHandle):
        handle.cancelled = True
        handle._stop.set()
        with self._lock:
            if self._handles.get(handle.subject_id) is handle:
                del self._handles[handle.subject_id]
        self._stop_handle(handle)

    def cancel_all(self):
        with self._lock:
            handles = list(self._handles.values())
        for handle in handles:
            self.cancel(handle)

    def handle_for(self, subject_id: str) -> Optional[ScheduleHandle]:
        with self._lock:
            return self._handles.get(subject_id)

    def _fire(self, handle: ScheduleHandle):
        if handle.cancelled:
            return
        handle.fire_count += 1
        try:
            handle.callback()
        except Exception as e:
            logger.error(f"Tick callback for '{handle.subject_id}' failed: {e}")

    def _start(self, handle: ScheduleHandle):
        """Hook for clocks that run their own timers"""

    def _stop_handle(self, handle: ScheduleHandle):
        """Hook for clocks that run their own timers"""


class ManualClock(EngineClock):
    """Deterministic clock advanced explicitly; due ticks fire in time order"""

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, timestamp: float):
        if timestamp < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self.advance(timestamp - self._now)

    def advance(self, seconds: float) -> int:
        """Move time forward, firing every tick that becomes due; returns the number fired"""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        target = self._now + seconds
        fired = 0

        while True:
            with self._lock:
                queue: List = [(h.next_due, h.handle_id, h) for h in self._handles.values()
                               if not h.cancelled and h.next_due <= target]
            if not queue:
                break
            heapq.heapify(queue)
            due, _, handle = heapq.heappop(queue)
            self._now = max(self._now, due)
            handle.next_due = due + handle.interval_s
            self._fire(handle)
            fired += 1

        self._now = target
        return fired


class ThreadingClock(EngineClock):
    """Wall-clock scheduler running one daemon thread per subject schedule"""

    def __init__(self):
        super().__init__()
        self._threads: Dict[int, threading.Thread] = {}

    def now(self) -> float:
        return time.time()

    def _start(self, handle: ScheduleHandle):
        thread = threading.Thread(
            target=self._run, args=(handle,),
            name=f"fracture-tick-{handle.subject_id}", daemon=True,
        )
        self._threads[handle.handle_id] = thread
        thread.start()

    def _run(self, handle: ScheduleHandle):
        while not handle._stop.wait(max(0.0, handle.next_due - time.time())):
            handle.next_due += handle.interval_s
            # Skip missed slots instead of bursting after a slow tick
            if handle.next_due < time.time():
                handle.next_due = time.time() + handle.interval_s
            self._fire(handle)

    def _stop_handle(self, handle: ScheduleHandle):
        thread = self._threads.pop(handle.handle_id, None)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, handle.interval_s))
