"""
Signal processors - spectral and statistical measures over one window.

All functions are pure: identical input gives identical output. They accept
array-likes and never raise on short or degenerate input; callers decide what
"too short" means.

Measures:
- spectral_slope: log-log regression slope of the power spectrum in a band
- lag1_autocorrelation: critical slowing down indicator (AC1)
- volatility: spread of first differences
- assess_quality: data quality in [0, 1]
- skewness, shannon_entropy: distribution shape measures
"""

import numpy as np
from typing import Tuple

EPSILON = 1e-12
POWER_FLOOR = 1e-10


def power_spectrum(values, sample_rate: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """
    One-sided power spectrum of a demeaned, Hann-windowed signal.

    Returns:
        (frequencies, power) arrays of equal length
    """
    x = np.asarray(values, dtype=np.float64)
    x = x[np.isfinite(x)]
    n = len(x)
    if n < 2:
        return np.empty(0), np.empty(0)

    x = (x - x.mean()) * np.hanning(n)
    spectrum = np.fft.rfft(x)
    power = (spectrum.real ** 2 + spectrum.imag ** 2) / n
    freqs = np.fft.rfftfreq(n, d=1.0 / sample_rate)
    return freqs, power


def spectral_slope(values, sample_rate: float = 1.0,
                   band: Tuple[float, float] = (0.01, 0.25), min_bins: int = 3) -> float:
    """
    Slope of log10(power) against log10(frequency) over [band_low, band_high).

    A steep negative slope means slow, structured dynamics; a slope moving
    toward zero (flattening) is the instability precursor.
    """
    freqs, power = power_spectrum(values, sample_rate)
    if len(freqs) == 0:
        return 0.0

    low, high = band
    mask = (freqs >= low) & (freqs < high) & (freqs > 0)
    if mask.sum() < min_bins:
        return 0.0

    log_f = np.log10(freqs[mask])
    log_p = np.log10(np.maximum(power[mask], POWER_FLOOR))

    denom = np.sum((log_f - log_f.mean()) ** 2)
    if denom < EPSILON:
        return 0.0
    slope = np.sum((log_f - log_f.mean()) * (log_p - log_p.mean())) / denom
    return float(slope)


def lag1_autocorrelation(values) -> float:
    """Normalized lag-1 covariance of the demeaned window; a flat window returns 1.0"""
    x = np.asarray(values, dtype=np.float64)
    x = x[np.isfinite(x)]
    if len(x) < 2:
        return 0.0

    centered = x - x.mean()
    denom = np.sum(centered ** 2)
    if denom < EPSILON:
        return 1.0
    return float(np.sum(centered[:-1] * centered[1:]) / denom)


def volatility(values, normalize: bool = True) -> float:
    """Population standard deviation of first differences, optionally relative to the window mean"""
    x = np.asarray(values, dtype=np.float64)
    x = x[np.isfinite(x)]
    if len(x) < 2:
        return 0.0

    vol = float(np.std(np.diff(x)))
    if normalize:
        mean = abs(float(np.mean(x)))
        if mean > EPSILON:
            vol /= mean
    return vol


def coefficient_of_variation(values) -> float:
    x = np.asarray(values, dtype=np.float64)
    x = x[np.isfinite(x)]
    if len(x) == 0:
        return 0.0
    mean = abs(float(np.mean(x)))
    if mean < EPSILON:
        return 0.0
    return float(np.std(x) / mean)


def skewness(values) -> float:
    x = np.asarray(values, dtype=np.float64)
    x = x[np.isfinite(x)]
    if len(x) < 3:
        return 0.0
    std = np.std(x)
    if std < EPSILON:
        return 0.0
    return float(np.mean(((x - x.mean()) / std) ** 3))


def shannon_entropy(values, bins: int = 16) -> float:
    """Shannon entropy in bits of the value histogram"""
    x = np.asarray(values, dtype=np.float64)
    x = x[np.isfinite(x)]
    if len(x) == 0:
        return 0.0
    if np.ptp(x) < EPSILON:
        return 0.0
    counts, _ = np.histogram(x, bins=bins)
    p = counts[counts > 0] / counts.sum()
    return float(-np.sum(p * np.log2(p)))


def outlier_fraction(values, fence: float = 3.0) -> float:
    """Fraction of finite values outside the IQR fences (Q1 - k*IQR, Q3 + k*IQR)"""
    x = np.asarray(values, dtype=np.float64)
    x = x[np.isfinite(x)]
    if len(x) == 0:
        return 0.0

    ordered = np.sort(x)
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[min(int(len(ordered) * 0.75), len(ordered) - 1)]
    iqr = q3 - q1
    outliers = (x < q1 - fence * iqr) | (x > q3 + fence * iqr)
    return float(outliers.sum() / len(x))


def assess_quality(values, rejected: int = 0, outlier_limit: float = 0.05) -> float:
    """
    Data quality score in [0, 1].

    Penalties:
    - missing values (NaN entries and samples rejected at ingest): 0.5 x missing fraction
    - outliers beyond 3 x IQR above `outlier_limit` of the window: 0.2
    - any non-finite value (including rejected samples): 0.3
    """
    x = np.asarray(values, dtype=np.float64)
    total = len(x) + rejected
    if total == 0:
        return 0.0

    quality = 1.0

    missing = int(np.isnan(x).sum()) + rejected
    if missing > 0:
        quality -= (missing / total) * 0.5

    if outlier_fraction(x) > outlier_limit:
        quality -= 0.2

    non_finite = int((~np.isfinite(x)).sum()) + rejected
    if non_finite > 0:
        quality -= 0.3

    return float(min(1.0, max(0.0, quality)))
