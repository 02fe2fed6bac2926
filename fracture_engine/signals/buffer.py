# buffer.py

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

import numpy as np

from fracture_engine.shared.errors import InvalidSampleError
from fracture_engine.shared.types import SignalSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalWindow:
    """Immutable snapshot of the most recent samples of one source"""
    source_id: str
    values: np.ndarray
    timestamps: np.ndarray
    rejected: int = 0

    def __len__(self) -> int:
        return len(self.values)

    @classmethod
    def empty(cls, source_id: str) -> 'SignalWindow':
        return cls(source_id, np.empty(0, dtype=np.float64), np.empty(0, dtype=np.float64))

    @classmethod
    def from_values(cls, source_id: str, values, timestamps=None, rejected: int = 0) -> 'SignalWindow':
        """Build a window directly from arrays (used by domain code and tests)"""
        values = np.asarray(values, dtype=np.float64).ravel()
        if timestamps is None:
            timestamps = np.arange(len(values), dtype=np.float64)
        return cls(source_id, values, np.asarray(timestamps, dtype=np.float64).ravel(), rejected)


class SignalBuffer:
    """
    Bounded, time-ordered ring buffer for one signal source.

    Samples are appended in non-decreasing timestamp order and the oldest
    sample is evicted once capacity is reached. Rejected samples are counted
    until the next window snapshot so the extractor can penalize quality.
    """

    def __init__(self, source_id: str, capacity: int = 300):
        if capacity < 1:
            raise ValueError(f"Buffer capacity must be >= 1, got {capacity}")
        self.source_id = source_id
        self.capacity = capacity
        self._samples: Deque[SignalSample] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._rejected_since_snapshot = 0
        self.total_rejected = 0
        self.total_pushed = 0

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def last_timestamp(self) -> Optional[float]:
        with self._lock:
            return self._samples[-1].timestamp if self._samples else None

    def push(self, value: float, timestamp: float) -> SignalSample:
        """Append a sample, evicting the oldest when full"""
        with self._lock:
            try:
                value = float(value)
                timestamp = float(timestamp)
            except (TypeError, ValueError):
                self._reject()
                raise InvalidSampleError(self.source_id, value, timestamp, "value is not numeric")

            if not math.isfinite(value):
                self._reject()
                raise InvalidSampleError(self.source_id, value, timestamp, "value is not finite")
            if not math.isfinite(timestamp):
                self._reject()
                raise InvalidSampleError(self.source_id, value, timestamp, "timestamp is not finite")
            if self._samples and timestamp < self._samples[-1].timestamp:
                self._reject()
                raise InvalidSampleError(
                    self.source_id, value, timestamp,
                    f"timestamp precedes newest sample ({self._samples[-1].timestamp})"
                )

            sample = SignalSample(value=value, timestamp=timestamp)
            self._samples.append(sample)
            self.total_pushed += 1
            return sample

    def _reject(self):
        self._rejected_since_snapshot += 1
        self.total_rejected += 1

    def window(self, size: Optional[int] = None, consume_rejections: bool = False) -> SignalWindow:
        """
        Snapshot the most recent samples.

        Args:
            size: Number of samples wanted; fewer are returned if not available
            consume_rejections: Reset the rejected counter after reading it (tick snapshots)
        """
        with self._lock:
            samples = list(self._samples)
            rejected = self._rejected_since_snapshot
            if consume_rejections:
                self._rejected_since_snapshot = 0

        if size is not None:
            samples = samples[-size:] if size > 0 else []

        values = np.fromiter((s.value for s in samples), dtype=np.float64, count=len(samples))
        timestamps = np.fromiter((s.timestamp for s in samples), dtype=np.float64, count=len(samples))
        return SignalWindow(self.source_id, values, timestamps, rejected)

    def clear(self):
        with self._lock:
            self._samples.clear()
            self._rejected_since_snapshot = 0

    def resize(self, capacity: int):
        """Change capacity in place; the newest samples survive a shrink"""
        if capacity < 1:
            raise ValueError(f"Buffer capacity must be >= 1, got {capacity}")
        with self._lock:
            self._samples = deque(self._samples, maxlen=capacity)
            self.capacity = capacity


@dataclass
class BufferSet:
    """All signal buffers belonging to one monitored subject"""
    capacity: int = 300
    buffers: Dict[str, SignalBuffer] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def add_source(self, source_id: str, capacity: Optional[int] = None) -> SignalBuffer:
        with self._lock:
            if source_id not in self.buffers:
                self.buffers[source_id] = SignalBuffer(source_id, capacity or self.capacity)
                logger.debug(f"Signal buffer created for source '{source_id}'")
            return self.buffers[source_id]

    def has_source(self, source_id: str) -> bool:
        return source_id in self.buffers

    def sources(self) -> List[str]:
        with self._lock:
            return list(self.buffers.keys())

    def push(self, source_id: str, value: float, timestamp: float) -> Optional[SignalSample]:
        """Append to a known source; unknown sources are ignored"""
        buffer = self.buffers.get(source_id)
        if buffer is None:
            logger.warning(f"Ignoring sample for unknown source '{source_id}'")
            return None
        return buffer.push(value, timestamp)

    def window(self, source_id: str, size: Optional[int] = None,
               consume_rejections: bool = False) -> SignalWindow:
        """Most recent samples of a source; an unknown source yields an empty window"""
        buffer = self.buffers.get(source_id)
        if buffer is None:
            return SignalWindow.empty(source_id)
        return buffer.window(size, consume_rejections=consume_rejections)

    def clear(self):
        for buffer in list(self.buffers.values()):
            buffer.clear()

    def resize(self, capacity: int):
        with self._lock:
            self.capacity = capacity
            buffers = list(self.buffers.values())
        for buffer in buffers:
            buffer.resize(capacity)
        logger.debug(f"Signal buffers resized to {capacity}")
