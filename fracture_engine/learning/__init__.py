from .effectiveness import EffectivenessLearner, OutcomeEvent

__all__ = ['EffectivenessLearner', 'OutcomeEvent']
