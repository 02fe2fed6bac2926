# event_bus.py

import itertools
import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Notifications published by the engine"""
    # Scoring
    SCORE_UPDATED = "score_updated"

    # Interventions
    INTERVENTION_TRIGGERED = "intervention_triggered"
    INTERVENTION_COMPLETED = "intervention_completed"
    INTERVENTION_ERROR = "intervention_error"

    # Crisis confirmation
    CRISIS_SUSPECTED = "crisis_suspected"
    CRISIS_CONFIRMED = "crisis_confirmed"
    CRISIS_CLEARED = "crisis_cleared"

    # Adaptive thresholds
    THRESHOLD_ADJUSTMENT_PROPOSED = "threshold_adjustment_proposed"
    THRESHOLD_ADJUSTMENT_APPLIED = "threshold_adjustment_applied"

    # Lifecycle
    MONITORING_STARTED = "monitoring_started"
    MONITORING_STOPPED = "monitoring_stopped"


@dataclass(frozen=True)
class Event:
    """Event data structure"""
    event_type: EventType
    subject_id: str
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)
    source: str = "engine"


@dataclass
class EventHandler:
    """Event handler registration"""
    handler_id: str
    handler_func: Callable[[Event], Any]
    event_types: List[EventType]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None

    def accepts(self, event: Event) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        return self.filter_func is None or self.filter_func(event)


class Subscription:
    """Handle returned by EventBus.subscribe; call unsubscribe() to stop delivery"""

    def __init__(self, bus: 'EventBus', handler_id: str):
        self._bus = bus
        self.handler_id = handler_id
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._bus.unregister_handler(self.handler_id)
            self.active = False

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()


class EventBus:
    """
    Synchronous, typed event channel.

    Responsibilities:
    - Route events to subscribed handlers in priority order
    - Isolate the publisher from handler failures
    - Track event statistics and a bounded history
    """

    def __init__(self, history_size: int = 1000):
        self._handlers: Dict[str, EventHandler] = {}
        self._lock = threading.RLock()
        self._ids = itertools.count(1)

        self.event_stats = {
            'total_events': 0,
            'events_by_type': defaultdict(int),
            'handler_errors': 0,
        }
        self.event_history = deque(maxlen=history_size)

        logger.info("Event bus initialized")

    def subscribe(self, handler_func: Callable[[Event], Any],
                  event_types: Union[EventType, Iterable[EventType], None] = None,
                  priority: int = 0, filter_func: Optional[Callable[[Event], bool]] = None,
                  handler_id: Optional[str] = None) -> Subscription:
        """
        Register a handler

        Args:
            handler_func: Called with each matching Event
            event_types: Event type(s) to receive; None receives everything
            priority: Higher runs earlier
            filter_func: Optional predicate applied after type matching
            handler_id: Optional explicit identifier
        """
        if isinstance(event_types, EventType):
            event_types = [event_types]
        types = list(event_types) if event_types else []

        with self._lock:
            handler_id = handler_id or f"handler_{next(self._ids)}"
            if handler_id in self._handlers:
                raise ValueError(f"Handler '{handler_id}' already registered")
            self._handlers[handler_id] = EventHandler(
                handler_id=handler_id,
                handler_func=handler_func,
                event_types=types,
                priority=priority,
                filter_func=filter_func,
            )

        logger.debug(f"Registered handler '{handler_id}' for events: {[t.value for t in types] or 'all'}")
        return Subscription(self, handler_id)

    def unregister_handler(self, handler_id: str):
        with self._lock:
            self._handlers.pop(handler_id, None)
        logger.debug(f"Unregistered handler '{handler_id}'")

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def publish(self, event: Event) -> Event:
        """Deliver an event to every matching handler"""
        with self._lock:
            self.event_stats['total_events'] += 1
            self.event_stats['events_by_type'][event.event_type] += 1
            self.event_history.append(event)
            handlers = sorted(self._handlers.values(), key=lambda h: h.priority, reverse=True)

        for handler in handlers:
            try:
                if handler.accepts(event):
                    handler.handler_func(event)
            except Exception as e:
                logger.error(f"Error in handler '{handler.handler_id}' for {event.event_type.value}: {e}")
                with self._lock:
                    self.event_stats['handler_errors'] += 1
        return event

    def emit(self, event_type: EventType, subject_id: str, data: Dict[str, Any] = None,
             timestamp: Optional[float] = None, source: str = "engine") -> Event:
        """Create and publish an event"""
        event = Event(
            event_type=event_type,
            subject_id=subject_id,
            timestamp=time.time() if timestamp is None else timestamp,
            data=data or {},
            source=source,
        )
        return self.publish(event)

    def get_event_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'total_events': self.event_stats['total_events'],
                'handler_errors': self.event_stats['handler_errors'],
                'events_by_type': {k.value: v for k, v in self.event_stats['events_by_type'].items()},
                'registered_handlers': len(self._handlers),
            }

    def get_recent_events(self, limit: int = 100, event_type: Optional[EventType] = None,
                          subject_id: Optional[str] = None) -> List[Event]:
        with self._lock:
            events = list(self.event_history)
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if subject_id:
            events = [e for e in events if e.subject_id == subject_id]
        return events[-limit:]
