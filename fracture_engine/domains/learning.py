# learning.py

"""
Learning domain - learner response times and answer accuracy

Sources:
- response_time: core features plus response variability (coefficient of variation / 0.5)
- accuracy: per-answer correctness in [0, 1]; accuracy decline compares the
  recent mean against the earlier part of the window
"""

import logging
from dataclasses import replace
from typing import Dict

import numpy as np

from fracture_engine.domains.base import DomainProfile, preset_from, register_domain
from fracture_engine.features import processors
from fracture_engine.features.extractor import ExtractorSettings, FeatureExtractor
from fracture_engine.intervention.dispatcher import ActionBundleTable
from fracture_engine.signals.buffer import SignalWindow

logger = logging.getLogger(__name__)

RECENT_ANSWERS = 10

LEARNING_WEIGHTS = {
    'spectral_slope': 0.2,
    'autocorrelation': 0.15,
    'volatility': 0.15,
    'accuracy_decline': 0.3,
    'response_variability': 0.2,
}


def response_variability_score(response_times) -> float:
    return min(1.0, processors.coefficient_of_variation(response_times) / 0.5)


def accuracy_decline_score(accuracy) -> float:
    x = np.asarray(accuracy, dtype=np.float64)
    x = x[np.isfinite(x)]
    if len(x) <= RECENT_ANSWERS:
        return 0.0
    historical = float(np.mean(x[:-RECENT_ANSWERS]))
    recent = float(np.mean(x[-RECENT_ANSWERS:]))
    return max(0.0, min(1.0, (historical - recent) * 2.0))


class ResponseTimeExtractor(FeatureExtractor):
    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        return {'response_variability': response_variability_score(window.values)}


class AccuracyExtractor(FeatureExtractor):
    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        return {'accuracy_decline': accuracy_decline_score(window.values)}


def learning_bundles() -> ActionBundleTable:
    return ActionBundleTable.from_mapping({
        'gentle': {
            'type': 'pacing_hint', 'duration_s': 600.0,
            'actions': [
                {'action_type': 'pacing_adjustment', 'target': 'content_delivery',
                 'payload': {'action': 'slow_down', 'factor': 0.8}},
                {'action_type': 'scaffolding_addition', 'target': 'learning_support',
                 'payload': {'action': 'add_hints', 'frequency': 0.3}},
            ],
        },
        'moderate': {
            'type': 'content_adaptation', 'duration_s': 1800.0,
            'actions': [
                {'action_type': 'content_review', 'target': 'learning_path',
                 'payload': {'priority': 'medium'}},
                {'action_type': 'alternative_explanation', 'target': 'content_delivery',
                 'payload': {'action': 'switch_modality', 'from': 'text', 'to': 'video'}},
                {'action_type': 'practice_enhancement', 'target': 'learning_activities',
                 'payload': {'action': 'add_guided_practice', 'frequency': 0.5}},
            ],
        },
        'aggressive': {
            'type': 'mastery_loop', 'duration_s': 3600.0,
            'actions': [
                {'action_type': 'comprehensive_support', 'target': 'learning_coordinator',
                 'payload': {'priority': 'urgent'}},
                {'action_type': 'content_simplification', 'target': 'curriculum_adaptation',
                 'payload': {'action': 'reduce_complexity', 'level': 'foundational'}},
                {'action_type': 'progress_pacing', 'target': 'learning_flow',
                 'payload': {'action': 'implement_mastery_checks', 'threshold': 0.8}},
            ],
        },
        'emergency': {
            'type': 'learner_support_escalation', 'duration_s': 0.0,
            'actions': [
                {'action_type': 'personalized_tutoring', 'target': 'learning_support',
                 'payload': {'action': 'activate_one_on_one', 'duration_s': 1800}},
                {'action_type': 'assessment_pause', 'target': 'learning_flow',
                 'payload': {'action': 'suspend_evaluation'}},
            ],
        },
    })


def learning_profile() -> DomainProfile:
    settings = ExtractorSettings(window_size=50, min_samples=10)
    return DomainProfile(
        name='learning',
        description="Cognitive fracture index over response times and accuracy",
        sources=('response_time', 'accuracy'),
        extractors={
            'response_time': lambda source_id: ResponseTimeExtractor(settings),
            'accuracy': lambda source_id: AccuracyExtractor(replace(settings, core_features=False)),
        },
        bundles=learning_bundles(),
        preset=preset_from(
            weights=LEARNING_WEIGHTS,
            cooldown_seconds=20.0,
            thresholds={'gentle': 0.25, 'moderate': 0.55, 'aggressive': 0.75},
        ),
        settings=settings,
    )


register_domain('learning', learning_profile)
