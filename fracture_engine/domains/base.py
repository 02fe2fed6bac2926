# base.py

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from fracture_engine.core.config import EngineConfig
from fracture_engine.features.extractor import ExtractorSettings, FeatureExtractor, GenericFeatureExtractor
from fracture_engine.intervention.dispatcher import ActionBundleTable, default_bundles

logger = logging.getLogger(__name__)

ExtractorFactory = Callable[[str], FeatureExtractor]


@dataclass
class DomainProfile:
    """
    Everything that specializes the generic engine for one monitoring domain

    Responsibilities:
    - Name the default signal sources of a subject
    - Build the feature extractor for each source
    - Supply the action bundle table and the configuration preset
    """
    name: str
    description: str = ""
    sources: Tuple[str, ...] = ()
    extractors: Dict[str, ExtractorFactory] = field(default_factory=dict)
    bundles: ActionBundleTable = field(default_factory=default_bundles)
    preset: EngineConfig = field(default_factory=EngineConfig)
    settings: ExtractorSettings = field(default_factory=ExtractorSettings)

    def extractor_for(self, source_id: str) -> FeatureExtractor:
        factory = self.extractors.get(source_id)
        if factory is None:
            return GenericFeatureExtractor(self.settings)
        return factory(source_id)


_REGISTRY: Dict[str, Callable[[], DomainProfile]] = {}


def register_domain(name: str, builder: Callable[[], DomainProfile]):
    """Make a domain available to get_domain(); re-registering replaces it"""
    if name in _REGISTRY:
        logger.info(f"Replacing registered domain '{name}'")
    _REGISTRY[name] = builder


def get_domain(name: Optional[str] = None) -> DomainProfile:
    """Fresh profile for a registered domain; None gives the generic profile"""
    name = name or 'generic'
    builder = _REGISTRY.get(name)
    if builder is None:
        raise KeyError(f"Unknown domain '{name}'. Available: {sorted(_REGISTRY)}")
    return builder()


def available_domains() -> Tuple[str, ...]:
    return tuple(sorted(_REGISTRY))


def generic_profile() -> DomainProfile:
    return DomainProfile(
        name='generic',
        description="Single-purpose instability monitor over arbitrary numeric streams",
    )


def preset_from(**overrides) -> EngineConfig:
    """Domain preset built on the engine defaults (version stays 1)"""
    return EngineConfig().replace(version=1, **overrides)


register_domain('generic', generic_profile)
