# simulation.py

"""
Synthetic signal generation for demos and tests

All randomness lives here, behind a seeded numpy Generator, so that the
engine itself stays deterministic.
"""

import logging
from typing import Iterable, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class SignalSimulator:
    """Seeded generator of stable, spiking and critically slowing signals"""

    def __init__(self, seed: Optional[int] = None):
        self.rng = np.random.default_rng(seed)

    def stable(self, n: int, level: float = 1.0, noise: float = 0.01) -> np.ndarray:
        """White noise around a constant level"""
        return level + self.rng.normal(0.0, noise, n) if noise > 0 else np.full(n, float(level))

    def spike(self, n_baseline: int, n_spike: int, level: float = 1.0, factor: float = 10.0,
              noise: float = 0.0) -> np.ndarray:
        """Baseline followed by a sustained jump to `factor` times the level"""
        baseline = self.stable(n_baseline, level, noise)
        spiked = self.stable(n_spike, level * factor, noise * factor)
        return np.concatenate([baseline, spiked])

    def critical_slowing(self, n: int, level: float = 1.0, start_ar: float = 0.2,
                         end_ar: float = 0.98, noise: float = 0.05) -> np.ndarray:
        """
        AR(1) process whose coefficient ramps from start_ar to end_ar.

        Rising memory and variance are the classic early warnings of a
        system approaching a tipping point.
        """
        coefficients = np.linspace(start_ar, end_ar, n)
        shocks = self.rng.normal(0.0, noise, n)
        values = np.empty(n)
        deviation = 0.0
        for i in range(n):
            deviation = coefficients[i] * deviation + shocks[i]
            values[i] = level + deviation
        return values

    def order_flow(self, n: int, buy_bias: float = 0.5, size: float = 100.0) -> np.ndarray:
        """Signed trade sizes; buy_bias is the probability of a buy"""
        signs = np.where(self.rng.random(n) < buy_bias, 1.0, -1.0)
        return signs * self.rng.exponential(size, n)


def timestamps(n: int, start: float = 0.0, interval: float = 1.0) -> np.ndarray:
    return start + np.arange(n, dtype=np.float64) * interval


def feed(engine, subject_id: str, source_id: str, values: Iterable[float],
         start: float = 0.0, interval: float = 1.0) -> int:
    """Ingest a series at a fixed interval; returns the number of samples accepted"""
    accepted = 0
    for i, value in enumerate(values):
        if engine.ingest(subject_id, source_id, float(value), start + i * interval) is not None:
            accepted += 1
    return accepted


def run_demo(seed: int = 7) -> List[dict]:
    """Drive a generic subject from calm to a critical slowing-down ramp and into a spike"""
    from fracture_engine.core.clock import ManualClock
    from fracture_engine.core.engine import FractureEngine

    simulator = SignalSimulator(seed)
    clock = ManualClock()
    engine = FractureEngine(clock=clock)
    engine.add_subject('demo', sources=['signal'])

    series = np.concatenate([
        simulator.stable(60, level=10.0, noise=0.05),
        simulator.critical_slowing(60, level=10.0),
        simulator.spike(0, 30, level=10.0, factor=10.0, noise=0.05),
    ])

    rows = []
    for i, value in enumerate(series):
        clock.set(float(i))
        engine.ingest('demo', 'signal', float(value), float(i))
        record = engine.tick('demo')
        rows.append(record.to_dict())
        if i % 10 == 0:
            logger.info(f"t={i:3d} index={record.index:.3f} level={record.level.value}")

    status = engine.get_status('demo')
    logger.info(f"Demo finished: {status['metrics']['interventions_triggered']} interventions, "
                f"{status['metrics']['crises_detected']} crises")
    engine.shutdown()
    return rows


if __name__ == "__main__":
    from fracture_engine.logging_config import setup_logging

    setup_logging()
    run_demo()
