"""Spectral checks driving the adaptive ZapLine-plus loop.

Two decisions are taken from the log spectrum around a noise frequency:

1. **Per-chunk peak detection**: whether the noise is visible in a chunk,
   and at which exact frequency.
2. **Cleaning quality**: whether a cleaning pass left noise behind (too
   weak) or carved a notch into the spectrum (too strong).

Both compare the spectrum against a baseline estimated from the flanks of a
detection window (see :func:`mne_zapline.spectrum.band_baseline`).

References
----------
.. [1] Klug, M., & Kloosterman, N. A. (2022). Zapline-plus: A Zapline extension for
       automatic and adaptive removal of frequency-specific noise artifacts in M/EEG.
       Human Brain Mapping, 43(9), 2743-2758.
       https://doi.org/10.1002/hbm.25832
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NamedTuple, Tuple

import numpy as np

from .errors import DegenerateSpectrumError
from .spectrum import band_baseline, band_mask, compute_chunk_log_psd, detection_window

logger = logging.getLogger(__name__)


class ChunkPeak(NamedTuple):
    """Noise peak of one chunk.

    ``frequency`` is the refined peak when ``found`` is True and the
    nominal frequency otherwise.
    """

    frequency: float
    found: bool
    power: float
    threshold: float


@dataclass(frozen=True)
class QualityAssessment:
    """Classification of one cleaning pass.

    Attributes
    ----------
    proportion_above_upper : float
        Fraction of bins in the upper-check window above ``threshold_upper``.
    proportion_below_lower : float
        Fraction of bins in the lower-check window below ``threshold_lower``.
    threshold_upper : float
        Remaining-noise threshold (log power).
    threshold_lower : float
        Over-cleaning threshold (log power).
    too_weak : bool
        Noise remains after cleaning.
    too_strong : bool
        Cleaning removed power below the spectral baseline.
    """

    proportion_above_upper: float
    proportion_below_lower: float
    threshold_upper: float
    threshold_lower: float
    too_weak: bool
    too_strong: bool

    @property
    def acceptable(self) -> bool:
        return not (self.too_weak or self.too_strong)


def _window_profile(
    freqs: np.ndarray, pxx_log: np.ndarray, frequency: float, winsize: float
) -> np.ndarray:
    mask = detection_window(freqs, frequency, winsize)
    return pxx_log[mask].mean(axis=1)


def _detailed_profile(
    freqs: np.ndarray,
    pxx_log: np.ndarray,
    frequency: float,
    bounds: Tuple[float, float],
    name: str,
) -> Tuple[np.ndarray, np.ndarray]:
    mask = band_mask(freqs, frequency, bounds)
    if not np.any(mask):
        raise DegenerateSpectrumError(
            f"{name} window {bounds} around {frequency:.3f} Hz contains no frequency bins; "
            "the spectral resolution is too coarse."
        )
    return freqs[mask], pxx_log[mask].mean(axis=1)


def detect_chunk_peak(
    chunk: np.ndarray,
    sfreq: float,
    frequency: float,
    detection_winsize: float = 6.0,
    detailed_freq_bounds: Tuple[float, float] = (-0.05, 0.05),
    freq_detect_mult_fine: float = 2.0,
) -> ChunkPeak:
    """Refine a noise frequency within one chunk.

    Parameters
    ----------
    chunk : ndarray, shape (n_samples, n_channels)
        Data of the chunk.
    sfreq : float
        Sampling frequency in Hz.
    frequency : float
        Nominal noise frequency in Hz.
    detection_winsize : float
        Width of the window used to estimate the baseline, in Hz.
    detailed_freq_bounds : tuple of float
        Offsets around ``frequency`` searched for the peak, in Hz.
    freq_detect_mult_fine : float
        Multiplier of the baseline variability defining the threshold.

    Returns
    -------
    peak : ChunkPeak
        Refined frequency, whether it exceeded the threshold, its power and
        the threshold.
    """
    freqs, pxx_log = compute_chunk_log_psd(chunk, sfreq)

    profile = _window_profile(freqs, pxx_log, frequency, detection_winsize)
    center, variability = band_baseline(profile)
    threshold = center + freq_detect_mult_fine * (center - variability)

    fine_freqs, fine_power = _detailed_profile(
        freqs, pxx_log, frequency, detailed_freq_bounds, "Detailed peak"
    )
    idx = int(np.argmax(fine_power))
    power = float(fine_power[idx])

    if power > threshold:
        return ChunkPeak(float(fine_freqs[idx]), True, power, threshold)
    return ChunkPeak(float(frequency), False, power, threshold)


def assess_cleaning(
    freqs: np.ndarray,
    pxx_clean_log: np.ndarray,
    frequency: float,
    detection_winsize: float = 6.0,
    detailed_freq_bounds_upper: Tuple[float, float] = (-0.05, 0.05),
    detailed_freq_bounds_lower: Tuple[float, float] = (-0.4, 0.1),
    freq_detect_mult_fine: float = 2.0,
    max_proportion_above_upper: float = 0.005,
    max_proportion_below_lower: float = 0.005,
) -> QualityAssessment:
    """Check whether cleaning at ``frequency`` was too weak or too strong.

    Parameters
    ----------
    freqs : ndarray, shape (n_freqs,)
        Frequency grid.
    pxx_clean_log : ndarray, shape (n_freqs, n_channels)
        Log spectrum of the cleaned recording.
    frequency : float
        Cleaned noise frequency in Hz.
    detection_winsize : float
        Width of the window used to estimate the baseline, in Hz.
    detailed_freq_bounds_upper : tuple of float
        Offsets checked for remaining noise.
    detailed_freq_bounds_lower : tuple of float
        Offsets checked for over-cleaning. Skewed below the noise frequency
        because removal leaves a dip there.
    freq_detect_mult_fine : float
        Multiplier of the baseline variability defining both thresholds.
    max_proportion_above_upper, max_proportion_below_lower : float
        Largest tolerated proportions of offending bins.

    Returns
    -------
    assessment : QualityAssessment
    """
    profile = _window_profile(freqs, pxx_clean_log, frequency, detection_winsize)
    center, variability = band_baseline(profile)
    spread = freq_detect_mult_fine * (center - variability)
    threshold_upper = center + spread
    threshold_lower = center - spread

    _, upper_power = _detailed_profile(
        freqs, pxx_clean_log, frequency, detailed_freq_bounds_upper, "Upper check"
    )
    _, lower_power = _detailed_profile(
        freqs, pxx_clean_log, frequency, detailed_freq_bounds_lower, "Lower check"
    )
    proportion_above = float(np.mean(upper_power > threshold_upper))
    proportion_below = float(np.mean(lower_power < threshold_lower))

    logger.info(
        f"{proportion_above * 100:.2f}% of frequency samples above threshold in the range "
        f"{detailed_freq_bounds_upper[0]} to {detailed_freq_bounds_upper[1]} Hz around "
        f"{frequency:.2f} Hz (limit {max_proportion_above_upper * 100:g}%)."
    )
    logger.info(
        f"{proportion_below * 100:.2f}% of frequency samples below threshold in the range "
        f"{detailed_freq_bounds_lower[0]} to {detailed_freq_bounds_lower[1]} Hz around "
        f"{frequency:.2f} Hz (limit {max_proportion_below_lower * 100:g}%)."
    )

    return QualityAssessment(
        proportion_above_upper=proportion_above,
        proportion_below_lower=proportion_below,
        threshold_upper=threshold_upper,
        threshold_lower=threshold_lower,
        too_weak=proportion_above > max_proportion_above_upper,
        too_strong=proportion_below > max_proportion_below_lower,
    )
