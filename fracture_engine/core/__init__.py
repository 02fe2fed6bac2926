# Core module - configuration, event channel and clocks
from .config import EngineConfig, Thresholds, ConfigurationSchema, load_config, validate_config
from .event_bus import EventBus, EventType, Event, Subscription
from .clock import EngineClock, ManualClock, ThreadingClock, ScheduleHandle

# Engine and registry available via direct import; they depend on the
# domain and pipeline packages, which import from this package
# from .engine import FractureEngine
# from .registry import SubjectRegistry, SubjectState

__all__ = ['EngineConfig', 'Thresholds', 'ConfigurationSchema', 'load_config', 'validate_config',
           'EventBus', 'EventType', 'Event', 'Subscription',
           'EngineClock', 'ManualClock', 'ThreadingClock', 'ScheduleHandle']
