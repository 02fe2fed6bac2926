"""
Shared fixtures for engine tests
"""

from fracture_engine.core.clock import ManualClock
from fracture_engine.core.engine import FractureEngine
from fracture_engine.core.event_bus import EventType
from fracture_engine.shared.types import FeatureSet, ScoreRecord, Trend


def pressure_extractor(window):
    """Feature set whose only component is the newest sample value"""
    value = float(window.values[-1]) if len(window) else 0.0
    return FeatureSet(
        source_id=window.source_id,
        quality_score=1.0,
        domain_fields={'pressure': value},
        sufficient=len(window) > 0,
        sample_count=len(window),
        core_features=False,
    )


def make_record(index, timestamp=0.0, trend=Trend.STABLE):
    return ScoreRecord(index=index, timestamp=timestamp, components={}, trend=trend, confidence=1.0)


class EventRecorder:
    """Collects published events for assertions"""

    def __init__(self, engine_or_bus):
        bus = getattr(engine_or_bus, 'event_bus', engine_or_bus)
        self.events = []
        self.subscription = bus.subscribe(self.events.append)

    def of_type(self, event_type: EventType):
        return [e for e in self.events if e.event_type == event_type]

    def count(self, event_type: EventType) -> int:
        return len(self.of_type(event_type))


def pressure_engine(subject_id='subject', **config):
    """Engine on a manual clock with one 'pressure' source whose value is the index"""
    clock = ManualClock()
    engine = FractureEngine(clock=clock)
    overrides = {'weights': {'pressure': 1.0}}
    overrides.update(config)
    engine.add_subject(subject_id, config=overrides)
    engine.register_extractor('pressure', pressure_extractor, subject_id=subject_id)
    return engine, clock


def drive(engine, clock, subject_id, readings, start=0.0, interval=1.0):
    """Ingest each reading at its own timestamp and tick once per reading"""
    records = []
    for i, value in enumerate(readings):
        t = start + i * interval
        clock.set(t)
        engine.ingest(subject_id, 'pressure', value, t)
        records.append(engine.tick(subject_id))
    return records
