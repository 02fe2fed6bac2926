# market.py

"""
Market domain - price, traded volume and signed order flow

Sources:
- price: core spectral/statistical features
- volume: volume velocity (mean |dV| over the recent window relative to mean volume)
- order_flow: signed trade volume, positive for buys and negative for sells;
  order imbalance is |buy - sell| / (buy + sell) over the most recent samples
"""

import logging
from dataclasses import replace
from typing import Dict

import numpy as np

from fracture_engine.domains.base import DomainProfile, preset_from, register_domain
from fracture_engine.features.extractor import ExtractorSettings, FeatureExtractor
from fracture_engine.intervention.dispatcher import ActionBundleTable
from fracture_engine.signals.buffer import SignalWindow

logger = logging.getLogger(__name__)

IMBALANCE_WINDOW = 10
VELOCITY_WINDOW = 20

MARKET_WEIGHTS = {
    'spectral_slope': 0.3,
    'autocorrelation': 0.25,
    'order_imbalance': 0.25,
    'volume_velocity': 0.2,
}


def order_imbalance_score(flows) -> float:
    x = np.asarray(flows, dtype=np.float64)[-IMBALANCE_WINDOW:]
    x = x[np.isfinite(x)]
    buy = float(x[x > 0].sum())
    sell = float(-x[x < 0].sum())
    if buy + sell == 0:
        return 0.0
    return min(1.0, abs(buy - sell) / (buy + sell) * 2.0)


def volume_velocity_score(volumes) -> float:
    x = np.asarray(volumes, dtype=np.float64)[-VELOCITY_WINDOW:]
    x = x[np.isfinite(x)]
    if len(x) < 2:
        return 0.0
    mean_volume = float(np.mean(x))
    if mean_volume <= 0:
        return 0.0
    velocity = float(np.mean(np.abs(np.diff(x))))
    return min(1.0, velocity / mean_volume * 3.0)


class OrderFlowExtractor(FeatureExtractor):
    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        return {'order_imbalance': order_imbalance_score(window.values)}


class VolumeExtractor(FeatureExtractor):
    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        return {'volume_velocity': volume_velocity_score(window.values)}


class PriceExtractor(FeatureExtractor):
    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        return {}


def market_bundles() -> ActionBundleTable:
    return ActionBundleTable.from_mapping({
        'gentle': {
            'type': 'defensive_hedge', 'duration_s': 300.0,
            'actions': [
                {'action_type': 'portfolio_hedging', 'target': 'risk_management',
                 'payload': {'action': 'reduce_leverage', 'ratio': 0.1}},
                {'action_type': 'options_positioning', 'target': 'derivatives_trading',
                 'payload': {'action': 'buy_protective_put', 'strike': 'atm', 'quantity': 0.5}},
                {'action_type': 'position_sizing', 'target': 'order_management',
                 'payload': {'action': 'limit_position_size', 'factor': 0.8}},
            ],
        },
        'moderate': {
            'type': 'volatility_playbook', 'duration_s': 900.0,
            'actions': [
                {'action_type': 'alert_generation', 'target': 'trading_desk',
                 'payload': {'priority': 'high', 'message': 'Elevated fracture index, execute defensive playbook'}},
                {'action_type': 'volatility_hedging', 'target': 'options_trading',
                 'payload': {'action': 'implement_collar_strategy', 'width': 0.05}},
                {'action_type': 'liquidity_management', 'target': 'order_routing',
                 'payload': {'action': 'increase_spread_requirements', 'multiplier': 1.5}},
            ],
        },
        'aggressive': {
            'type': 'position_reduction', 'duration_s': 1800.0,
            'actions': [
                {'action_type': 'emergency_alert', 'target': 'risk_committee',
                 'payload': {'priority': 'urgent', 'message': 'Market fracture imminent, reduce positions'}},
                {'action_type': 'position_liquidation', 'target': 'portfolio_management',
                 'payload': {'action': 'emergency_stop_loss'}},
                {'action_type': 'circuit_breaker', 'target': 'trading_system',
                 'payload': {'action': 'halt_automated_trading', 'duration_s': 300}},
            ],
        },
        'emergency': {
            'type': 'emergency_halt', 'duration_s': 0.0,
            'actions': [
                {'action_type': 'emergency_alert', 'target': 'chief_risk_officer',
                 'payload': {'priority': 'critical'}},
                {'action_type': 'position_liquidation', 'target': 'portfolio_management',
                 'payload': {'action': 'emergency_reduction', 'percentage': 0.5}},
                {'action_type': 'system_protection', 'target': 'trading_infrastructure',
                 'payload': {'action': 'circuit_breaker_activation'}},
            ],
        },
    })


def market_profile() -> DomainProfile:
    settings = ExtractorSettings(window_size=64, min_samples=20)
    auxiliary = replace(settings, core_features=False)
    return DomainProfile(
        name='market',
        description="Market fracture index over price, volume and order flow",
        sources=('price', 'volume', 'order_flow'),
        extractors={
            'price': lambda source_id: PriceExtractor(settings),
            'volume': lambda source_id: VolumeExtractor(auxiliary),
            'order_flow': lambda source_id: OrderFlowExtractor(auxiliary),
        },
        bundles=market_bundles(),
        preset=preset_from(weights=MARKET_WEIGHTS, cooldown_seconds=30.0),
        settings=settings,
    )


register_domain('market', market_profile)
