# physiological.py

"""
Physiological domain - cardiac and neural monitoring streams

Adds distribution shape (|skewness| / 2) and complexity loss
((5 - Shannon entropy in bits) / 3) to the spectral slope and
autocorrelation components. Volatility is not weighted.
"""

import logging
from typing import Dict

from fracture_engine.domains.base import DomainProfile, preset_from, register_domain
from fracture_engine.features import processors
from fracture_engine.features.extractor import ExtractorSettings, FeatureExtractor
from fracture_engine.intervention.dispatcher import ActionBundleTable
from fracture_engine.signals.buffer import SignalWindow

logger = logging.getLogger(__name__)

# 32 bins bound the entropy at 5 bits
ENTROPY_BINS = 32

PHYSIOLOGICAL_WEIGHTS = {
    'spectral_slope': 0.4,
    'autocorrelation': 0.3,
    'skewness': 0.2,
    'entropy_loss': 0.1,
}


def skewness_score(values) -> float:
    return min(1.0, abs(processors.skewness(values)) / 2.0)


def entropy_loss_score(values) -> float:
    entropy = processors.shannon_entropy(values, bins=ENTROPY_BINS)
    return max(0.0, min(1.0, (5.0 - entropy) / 3.0))


class PhysiologicalExtractor(FeatureExtractor):
    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        return {
            'skewness': skewness_score(window.values),
            'entropy_loss': entropy_loss_score(window.values),
        }


def physiological_bundles() -> ActionBundleTable:
    return ActionBundleTable.from_mapping({
        'gentle': {
            'type': 'monitoring_review', 'duration_s': 900.0,
            'actions': [
                {'action_type': 'dashboard_notification', 'target': 'care_team',
                 'payload': {'priority': 'low'}},
                {'action_type': 'vital_signs_review', 'target': 'nursing_staff',
                 'payload': {'timeframe': 'next_round'}},
            ],
        },
        'moderate': {
            'type': 'clinical_alert', 'duration_s': 1800.0,
            'actions': [
                {'action_type': 'dashboard_alert', 'target': 'attending_physician',
                 'payload': {'priority': 'medium'}},
                {'action_type': 'data_amplification', 'target': 'monitoring_system',
                 'payload': {'sampling': 'increase'}},
                {'action_type': 'predictive_analysis', 'target': 'clinical_decision_support',
                 'payload': {'horizon': 'short_term'}},
            ],
        },
        'aggressive': {
            'type': 'rapid_response', 'duration_s': 300.0,
            'actions': [
                {'action_type': 'emergency_alert', 'target': 'rapid_response_team',
                 'payload': {'priority': 'high'}},
                {'action_type': 'intervention_preparation', 'target': 'bedside_team',
                 'payload': {'equipment': 'standby'}},
                {'action_type': 'data_stream_amplification', 'target': 'monitoring_system',
                 'payload': {'resolution': 'maximum'}},
            ],
        },
        'emergency': {
            'type': 'crisis_activation', 'duration_s': 0.0,
            'actions': [
                {'action_type': 'emergency_alert', 'target': 'rapid_response_team',
                 'payload': {'priority': 'critical'}},
                {'action_type': 'system_activation', 'target': 'crisis_protocols',
                 'payload': {'protocol': 'crisis_response'}},
                {'action_type': 'documentation', 'target': 'medical_record',
                 'payload': {'event': 'crisis_confirmed'}},
            ],
        },
    })


def physiological_profile() -> DomainProfile:
    settings = ExtractorSettings(window_size=128, min_samples=32)
    return DomainProfile(
        name='physiological',
        description="Physiological fracture index over cardiac and neural signals",
        sources=('cardiac', 'neural'),
        extractors={
            'cardiac': lambda source_id: PhysiologicalExtractor(settings),
            'neural': lambda source_id: PhysiologicalExtractor(settings),
        },
        bundles=physiological_bundles(),
        preset=preset_from(
            weights=PHYSIOLOGICAL_WEIGHTS,
            crisis_threshold=0.85,
            crisis_window=3,
            crisis_timeout_s=30.0,
        ),
        settings=settings,
    )


register_domain('physiological', physiological_profile)
