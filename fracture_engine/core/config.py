"""
Engine Configuration - explicit, versioned settings with schema validation

Sources, lowest precedence first:
- dataclass defaults
- domain preset (see fracture_engine.domains)
- JSON configuration file
- FRACTURE_* environment variables

Every change goes through validation; a rejected change leaves the previous
configuration untouched because EngineConfig instances are immutable.
"""

import dataclasses
import json
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from fracture_engine.shared.errors import ConfigurationError
from fracture_engine.shared.types import Level

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    'spectral_slope': 0.3,
    'autocorrelation': 0.25,
    'volatility': 0.45,
}


@dataclass(frozen=True)
class Thresholds:
    """Lower index boundary of each intervention level"""
    gentle: float = 0.3
    moderate: float = 0.6
    aggressive: float = 0.8

    def boundary(self, level: Union[Level, str]) -> float:
        name = level.value if isinstance(level, Level) else level
        if name not in ('gentle', 'moderate', 'aggressive'):
            raise KeyError(f"No boundary for level '{name}'")
        return getattr(self, name)

    def lower_neighbour(self, level: Union[Level, str]) -> float:
        name = level.value if isinstance(level, Level) else level
        return {'gentle': 0.0, 'moderate': self.gentle, 'aggressive': self.moderate}[name]

    def upper_neighbour(self, level: Union[Level, str]) -> float:
        name = level.value if isinstance(level, Level) else level
        return {'gentle': self.moderate, 'moderate': self.aggressive, 'aggressive': 1.0}[name]

    def as_dict(self) -> Dict[str, float]:
        return {'gentle': self.gentle, 'moderate': self.moderate, 'aggressive': self.aggressive}

    @classmethod
    def coerce(cls, value: Union['Thresholds', Mapping[str, float]], base: 'Thresholds' = None) -> 'Thresholds':
        if isinstance(value, Thresholds):
            return value
        unknown = set(value) - {'gentle', 'moderate', 'aggressive'}
        if unknown:
            raise ConfigurationError(f"Unknown threshold names: {sorted(unknown)}")
        return dataclasses.replace(base or cls(), **{k: float(v) for k, v in value.items()})


@dataclass
class ConfigurationSchema:
    """Schema definition for configuration validation"""
    key: str
    data_type: Type
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    description: str = ""


SCHEMAS: List[ConfigurationSchema] = [
    ConfigurationSchema('cooldown_seconds', float, 0.0, 86400.0,
                        description="Minimum time between two interventions for one subject"),
    ConfigurationSchema('crisis_threshold', float, 0.0, 1.0,
                        description="Index at or above which a crisis is suspected"),
    ConfigurationSchema('crisis_window', int, 1, 100,
                        description="Consecutive readings needed to confirm a crisis"),
    ConfigurationSchema('crisis_timeout_s', float, 0.0, 86400.0,
                        description="Maximum gap between readings of one pending crisis"),
    ConfigurationSchema('max_concurrency', int, 1, 100,
                        description="Tiered interventions kept active at once per subject; older ones are superseded"),
    ConfigurationSchema('score_history_size', int, 3, 100000,
                        description="Score records kept per subject"),
    ConfigurationSchema('intervention_history_size', int, 1, 100000,
                        description="Completed interventions kept per subject"),
    ConfigurationSchema('crisis_history_size', int, 1, 100000,
                        description="Confirmed crises kept per subject"),
    ConfigurationSchema('buffer_capacity', int, 2, 1000000,
                        description="Samples kept per signal source"),
    ConfigurationSchema('tick_interval_s', float, 0.001, 86400.0,
                        description="Default scoring cadence"),
    ConfigurationSchema('adaptation_frequency', int, 1, 100000,
                        description="Outcomes per level key between adjustment reviews"),
    ConfigurationSchema('effectiveness_floor', float, 0.0, 1.0,
                        description="Average effectiveness below which an adjustment is proposed"),
    ConfigurationSchema('success_threshold', float, 0.0, 1.0,
                        description="Effectiveness counted as a successful intervention"),
    ConfigurationSchema('threshold_step', float, 0.0, 0.5,
                        description="Boundary change per proposal"),
    ConfigurationSchema('max_total_shift', float, 0.0, 1.0,
                        description="Largest cumulative boundary change from the initial value"),
    ConfigurationSchema('min_threshold_gap', float, 0.0, 0.5,
                        description="Minimum distance kept between adjacent boundaries"),
    ConfigurationSchema('cooldown_step', float, 0.0, 0.9,
                        description="Fractional cooldown reduction per proposal"),
    ConfigurationSchema('min_cooldown_s', float, 0.0, 86400.0,
                        description="Cooldown never proposed below this value"),
]


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration for one subject (or the engine default)"""
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    thresholds: Thresholds = field(default_factory=Thresholds)
    cooldown_seconds: float = 30.0
    crisis_threshold: float = 0.85
    crisis_window: int = 3
    crisis_timeout_s: float = 30.0
    max_concurrency: int = 1
    score_history_size: int = 100
    intervention_history_size: int = 200
    crisis_history_size: int = 50
    buffer_capacity: int = 300
    tick_interval_s: float = 1.0

    # Effectiveness learning
    adaptation_frequency: int = 10
    effectiveness_floor: float = 0.5
    success_threshold: float = 0.5
    threshold_step: float = 0.05
    max_total_shift: float = 0.15
    min_threshold_gap: float = 0.05
    cooldown_step: float = 0.1
    min_cooldown_s: float = 5.0
    auto_apply_adjustments: bool = False

    version: int = 1

    def __post_init__(self):
        validate_config(self)

    def replace(self, **changes) -> 'EngineConfig':
        """Validated copy with the given changes and the version bumped"""
        unknown = set(changes) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        changes = {k: v for k, v in changes.items() if v is not None}
        changes.setdefault('version', self.version + 1)

        try:
            if 'thresholds' in changes:
                changes['thresholds'] = Thresholds.coerce(changes['thresholds'], self.thresholds)
            if 'weights' in changes:
                changes['weights'] = {str(k): float(v) for k, v in dict(changes['weights']).items()}
            return dataclasses.replace(self, **changes)
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data['thresholds'] = self.thresholds.as_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: 'EngineConfig' = None) -> 'EngineConfig':
        base = base or cls()
        return base.replace(**dict(data))

    def summary(self) -> str:
        return str({
            'version': self.version,
            'thresholds': self.thresholds.as_dict(),
            'cooldown_seconds': self.cooldown_seconds,
            'crisis_window': self.crisis_window,
            'weights': self.weights,
        })


def validate_config(config: EngineConfig):
    """Raise ConfigurationError listing every violated rule"""
    errors = []

    for schema in SCHEMAS:
        value = getattr(config, schema.key)
        if schema.data_type is int:
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"{schema.key} must be an integer")
                continue
        elif not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
            errors.append(f"{schema.key} must be a finite number")
            continue
        if schema.min_value is not None and value < schema.min_value:
            errors.append(f"{schema.key} must be >= {schema.min_value} ({schema.description})")
        if schema.max_value is not None and value > schema.max_value:
            errors.append(f"{schema.key} must be <= {schema.max_value} ({schema.description})")

    t = config.thresholds
    for name, value in t.as_dict().items():
        if not isinstance(value, (int, float)) or not math.isfinite(value) or not 0.0 < value <= 1.0:
            errors.append(f"threshold '{name}' must be in (0, 1], got {value}")
    if not errors and not (t.gentle <= t.moderate <= t.aggressive):
        errors.append(f"thresholds must be ascending (gentle <= moderate <= aggressive), got {t.as_dict()}")

    if not config.weights:
        errors.append("at least one component weight is required")
    else:
        for name, weight in config.weights.items():
            if not isinstance(weight, (int, float)) or not math.isfinite(weight) or weight < 0:
                errors.append(f"weight '{name}' must be a non-negative finite number, got {weight}")
        if not errors and sum(config.weights.values()) <= 0:
            errors.append("component weights must sum to a positive value")

    if config.version < 1:
        errors.append("version must be >= 1")

    if errors:
        raise ConfigurationError("Configuration validation failed: " + "; ".join(errors))


ENV_MAPPINGS = {
    'FRACTURE_COOLDOWN_SECONDS': ('cooldown_seconds', float),
    'FRACTURE_CRISIS_THRESHOLD': ('crisis_threshold', float),
    'FRACTURE_CRISIS_WINDOW': ('crisis_window', int),
    'FRACTURE_MAX_CONCURRENCY': ('max_concurrency', int),
    'FRACTURE_TICK_INTERVAL': ('tick_interval_s', float),
    'FRACTURE_BUFFER_CAPACITY': ('buffer_capacity', int),
    'FRACTURE_AUTO_APPLY_ADJUSTMENTS': ('auto_apply_adjustments', bool),
    'FRACTURE_THRESHOLD_GENTLE': ('thresholds.gentle', float),
    'FRACTURE_THRESHOLD_MODERATE': ('thresholds.moderate', float),
    'FRACTURE_THRESHOLD_AGGRESSIVE': ('thresholds.aggressive', float),
}


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    thresholds: Dict[str, float] = {}

    for env_var, (config_key, value_type) in ENV_MAPPINGS.items():
        if env_var not in environ:
            continue
        raw = environ[env_var]
        try:
            if value_type is bool:
                value = raw.lower() in ('true', '1', 'yes', 'on')
            else:
                value = value_type(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_var}: {raw!r}") from e

        if config_key.startswith('thresholds.'):
            thresholds[config_key.split('.', 1)[1]] = value
        else:
            overrides[config_key] = value
        logger.info(f"Applied environment override: {config_key} = {value}")

    if thresholds:
        overrides['thresholds'] = thresholds
    return overrides


def load_config(config_file: Optional[str] = None, preset: Optional[EngineConfig] = None,
                environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """
    Build a configuration from a preset, an optional JSON file and environment overrides

    Args:
        config_file: Path to a JSON object with EngineConfig keys
        preset: Starting configuration (defaults to EngineConfig())
        environ: Environment mapping (defaults to os.environ)
    """
    config = preset or EngineConfig()
    sources = ['defaults' if preset is None else 'preset']

    if config_file:
        try:
            with open(config_file, 'r') as f:
                file_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot load configuration file {config_file}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Configuration file {config_file} must contain a JSON object")
        config = config.replace(**file_config)
        sources.append(config_file)

    overrides = _environment_overrides(os.environ if environ is None else environ)
    if overrides:
        config = config.replace(**overrides)
        sources.append('environment')

    logger.info(f"Configuration loaded from {', '.join(sources)}: {config.summary()}")
    return config
