"""Adaptive cleaning of one noise frequency.

For a single frequency the recording is cleaned chunk by chunk, the
aggregate cleaned spectrum is assessed, and the outlier threshold (sigma)
and the minimum number of removed components are adapted until the
cleaning is neither too weak nor too strong.

A "too strong" result always wins: once it has been seen for a frequency,
sigma is never lowered again for that frequency.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from .adaptive import QualityAssessment, assess_cleaning, detect_chunk_peak
from .config import ZaplineConfig
from .errors import InvalidInputError
from .removal import NoiseRemover, RemovalOptions
from .spectrum import RemovedPower, chunk_bounds, compute_log_psd, removed_power

logger = logging.getLogger(__name__)

SIGMA_STEP = 0.25
# never reached when sigma moves between its bounds in SIGMA_STEP increments
MAX_ITERATIONS = 100


class CleaningStatus(str, Enum):
    RUNNING = "running"
    CONVERGED = "converged"


# =============================================================================
# State and result records
# =============================================================================


@dataclass
class CleaningState:
    """Mutable state of the convergence loop of one frequency.

    Attributes
    ----------
    sigma : float
        Current outlier threshold on component scores.
    fixed_nremove : int
        Current minimum number of removed components.
    baseline_nremove : int
        User-configured minimum; ``fixed_nremove`` never drops below it.
    too_strong_once : bool
        Set on the first "too strong" assessment and never cleared.
    status : CleaningStatus
        ``RUNNING`` until the loop stops.
    n_iterations : int
        Number of completed cleaning passes.
    sigma_history, nremove_history : list
        Sigma and minimum used by each pass.
    """

    sigma: float
    fixed_nremove: int
    baseline_nremove: int
    too_strong_once: bool = False
    status: CleaningStatus = CleaningStatus.RUNNING
    n_iterations: int = 0
    sigma_history: List[float] = field(default_factory=list)
    nremove_history: List[int] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: ZaplineConfig) -> "CleaningState":
        return cls(
            sigma=config.noise_comp_detect_sigma,
            fixed_nremove=config.fixed_nremove,
            baseline_nremove=config.fixed_nremove,
        )

    @property
    def done(self) -> bool:
        return self.status is CleaningStatus.CONVERGED

    def advance(
        self,
        assessment: QualityAssessment,
        min_sigma: float,
        max_sigma: float,
        adaptive_sigma: bool = True,
    ) -> None:
        """Record a finished pass and choose the settings of the next one."""
        self.n_iterations += 1
        self.sigma_history.append(self.sigma)
        self.nremove_history.append(self.fixed_nremove)

        if not adaptive_sigma:
            self.status = CleaningStatus.CONVERGED
            return

        if assessment.too_strong and self.sigma < max_sigma:
            self.too_strong_once = True
            self.sigma = min(self.sigma + SIGMA_STEP, max_sigma)
            self.fixed_nremove = max(self.fixed_nremove - 1, self.baseline_nremove)
            logger.info(
                f"Cleaning too strong! Increasing sigma for noise component detection to "
                f"{self.sigma:g} and setting minimum number of removed components to "
                f"{self.fixed_nremove}."
            )
            return

        if assessment.too_weak and not self.too_strong_once and self.sigma > min_sigma:
            self.sigma = max(self.sigma - SIGMA_STEP, min_sigma)
            self.fixed_nremove += 1
            logger.info(
                f"Cleaning too weak! Reducing sigma for noise component detection to "
                f"{self.sigma:g} and setting minimum number of removed components to "
                f"{self.fixed_nremove}."
            )
            return

        self.status = CleaningStatus.CONVERGED


@dataclass
class ChunkResult:
    """Cleaning of one chunk.

    Attributes
    ----------
    start, stop : int
        Sample range of the chunk.
    cleaned : ndarray, shape (stop - start, n_channels)
        Cleaned samples.
    n_removed : int
        Number of removed components.
    scores : ndarray
        Component scores returned by the remover.
    noise_peak : float
        Frequency cleaned in this chunk, in Hz.
    found_noise : bool
        Whether a credible individual peak was detected.
    """

    start: int
    stop: int
    cleaned: np.ndarray
    n_removed: int
    scores: np.ndarray
    noise_peak: float
    found_noise: bool


@dataclass
class FrequencyResult:
    """Outcome of the adaptive cleaning of one noise frequency.

    Attributes
    ----------
    frequency : float
        Nominal noise frequency in Hz.
    chunk_bounds : list of (int, int)
        Sample range of each chunk.
    n_remove : ndarray, shape (n_chunks,)
        Components removed per chunk in the final pass.
    scores : ndarray, shape (n_chunks, n_scores)
        Component scores per chunk, NaN-padded.
    noise_peaks : ndarray, shape (n_chunks,)
        Frequency cleaned in each chunk.
    found_noise : ndarray of bool, shape (n_chunks,)
        Whether each chunk had a credible individual peak.
    sigma : float
        Sigma of the final pass.
    fixed_nremove : int
        Minimum number of removed components of the final pass.
    too_strong_once : bool
        Whether any pass was too strong.
    n_iterations : int
        Number of cleaning passes.
    sigma_history, nremove_history : list
        Settings of every pass.
    assessment : QualityAssessment
        Quality check of the final pass.
    converged : bool
        Whether the final pass passed the quality check.
    removed_power : RemovedPower
        Proportions of removed spectral power.
    freqs : ndarray
        Frequency grid of the spectra below.
    psd_raw_log, psd_clean_log, psd_removed_log : ndarray
        Channel-averaged log spectra of the input, the cleaned data and the
        removed part.
    detection_threshold : float | None
        Threshold of the automatic detection that found this frequency.
    """

    frequency: float
    chunk_bounds: List[Tuple[int, int]]
    n_remove: np.ndarray
    scores: np.ndarray
    noise_peaks: np.ndarray
    found_noise: np.ndarray
    sigma: float
    fixed_nremove: int
    too_strong_once: bool
    n_iterations: int
    sigma_history: List[float]
    nremove_history: List[int]
    assessment: QualityAssessment
    converged: bool
    removed_power: RemovedPower
    freqs: np.ndarray
    psd_raw_log: np.ndarray
    psd_clean_log: np.ndarray
    psd_removed_log: np.ndarray
    detection_threshold: Optional[float] = None

    @property
    def n_chunks(self) -> int:
        return len(self.chunk_bounds)


# =============================================================================
# Chunk processing
# =============================================================================


def process_chunk(
    chunk: np.ndarray,
    bounds: Tuple[int, int],
    sfreq: float,
    frequency: float,
    sigma: float,
    fixed_nremove: int,
    config: ZaplineConfig,
    remover: NoiseRemover,
) -> ChunkResult:
    """Clean one chunk at ``frequency``.

    If individual peaks are searched and none is found in the chunk, the
    nominal frequency is cleaned with the fixed number of components only.

    Parameters
    ----------
    chunk : ndarray, shape (n_samples, n_channels)
        Data of the chunk.
    bounds : tuple of int
        Sample range of the chunk in the recording.
    sfreq : float
        Sampling frequency in Hz.
    frequency : float
        Nominal noise frequency in Hz.
    sigma : float
        Outlier threshold of the current pass.
    fixed_nremove : int
        Minimum number of components to remove.
    config : ZaplineConfig
        Resolved configuration.
    remover : NoiseRemover
        Removal step.

    Returns
    -------
    result : ChunkResult
    """
    adaptive = config.adaptive_nremove
    noise_peak = frequency
    found_noise = False

    if config.search_individual_noise:
        peak = detect_chunk_peak(
            chunk,
            sfreq,
            frequency,
            detection_winsize=config.detection_winsize,
            detailed_freq_bounds=config.detailed_freq_bounds_upper,
            freq_detect_mult_fine=config.freq_detect_mult_fine,
        )
        noise_peak = peak.frequency
        found_noise = peak.found
        if not found_noise:
            adaptive = False

    options = RemovalOptions(adaptive=adaptive, sigma=sigma, nkeep=config.nkeep)
    result = remover(chunk, noise_peak / sfreq, fixed_nremove, options)

    cleaned = np.asarray(result.cleaned, dtype=float)
    if cleaned.shape != chunk.shape:
        raise RuntimeError(
            f"Noise remover returned data of shape {cleaned.shape} for a chunk of shape {chunk.shape}."
        )
    return ChunkResult(
        start=bounds[0],
        stop=bounds[1],
        cleaned=cleaned,
        n_removed=int(result.n_removed),
        scores=np.asarray(result.scores, dtype=float).ravel(),
        noise_peak=float(noise_peak),
        found_noise=bool(found_noise),
    )


def _clean_pass(
    data: np.ndarray,
    bounds: Sequence[Tuple[int, int]],
    sfreq: float,
    frequency: float,
    state: CleaningState,
    config: ZaplineConfig,
    remover: NoiseRemover,
) -> List[ChunkResult]:
    return Parallel(n_jobs=config.n_jobs)(
        delayed(process_chunk)(
            data[start:stop],
            (start, stop),
            sfreq,
            frequency,
            state.sigma,
            state.fixed_nremove,
            config,
            remover,
        )
        for start, stop in bounds
    )


def _pad_scores(chunk_results: Sequence[ChunkResult], width: int) -> np.ndarray:
    width = max([width] + [len(res.scores) for res in chunk_results])
    scores = np.full((len(chunk_results), width), np.nan)
    for i, res in enumerate(chunk_results):
        scores[i, : len(res.scores)] = res.scores
    return scores


# =============================================================================
# Convergence loop
# =============================================================================


def clean_frequency(
    data: np.ndarray,
    sfreq: float,
    frequency: float,
    config: ZaplineConfig,
    remover: NoiseRemover,
) -> Tuple[np.ndarray, FrequencyResult]:
    """Clean ``frequency`` until the quality check passes or sigma is exhausted.

    Parameters
    ----------
    data : ndarray, shape (n_samples, n_channels)
        Recording, already cleaned at all previous frequencies.
    sfreq : float
        Sampling frequency in Hz.
    frequency : float
        Noise frequency in Hz.
    config : ZaplineConfig
        Configuration resolved with :meth:`ZaplineConfig.resolve`.
    remover : NoiseRemover
        Removal step applied to every chunk.

    Returns
    -------
    cleaned : ndarray, shape (n_samples, n_channels)
        Output of the final pass.
    result : FrequencyResult
        Per-chunk matrices and diagnostics of the final pass.
    """
    nyquist = sfreq / 2.0
    if frequency >= nyquist:
        raise InvalidInputError(
            f"Noise frequency {frequency:.2f} Hz is at or above Nyquist ({nyquist:.2f} Hz)."
        )

    window = config.win_size_complete_spectrum
    bounds = chunk_bounds(data.shape[0], sfreq, config.chunk_length)
    freqs, pxx_raw, pxx_raw_log = compute_log_psd(data, sfreq, window)
    state = CleaningState.from_config(config)

    logger.info(f"Removing noise at {frequency:g} Hz ({len(bounds)} chunks)...")

    while True:
        chunk_results = _clean_pass(data, bounds, sfreq, frequency, state, config, remover)
        cleaned = np.empty_like(data)
        for res in chunk_results:
            cleaned[res.start:res.stop] = res.cleaned

        _, pxx_clean, pxx_clean_log = compute_log_psd(cleaned, sfreq, window)
        _, _, pxx_removed_log = compute_log_psd(data - cleaned, sfreq, window)

        power = removed_power(freqs, pxx_raw, pxx_clean, frequency)
        logger.info(f"Proportion of removed power: {power.total:.4g}")
        logger.info(f"Proportion of removed power below noise frequency: {power.below_noise:.4g}")
        logger.info(f"Proportion of removed power at noise frequency: {power.at_noise:.4g}")

        assessment = assess_cleaning(
            freqs,
            pxx_clean_log,
            frequency,
            detection_winsize=config.detection_winsize,
            detailed_freq_bounds_upper=config.detailed_freq_bounds_upper,
            detailed_freq_bounds_lower=config.detailed_freq_bounds_lower,
            freq_detect_mult_fine=config.freq_detect_mult_fine,
            max_proportion_above_upper=config.max_proportion_above_upper,
            max_proportion_below_lower=config.max_proportion_below_lower,
        )

        used_sigma, used_nremove = state.sigma, state.fixed_nremove
        state.advance(assessment, config.min_sigma, config.max_sigma, config.adaptive_sigma)
        if state.done:
            break
        if state.n_iterations >= MAX_ITERATIONS:
            logger.warning(
                f"Stopping adaptive cleaning at {frequency:g} Hz after {MAX_ITERATIONS} passes."
            )
            break

    if config.adaptive_sigma and not assessment.acceptable:
        kind = "too strong" if assessment.too_strong else "too weak"
        logger.warning(
            f"Cleaning at {frequency:g} Hz is still {kind} at sigma {used_sigma:g}; "
            "keeping the last result."
        )

    result = FrequencyResult(
        frequency=float(frequency),
        chunk_bounds=list(bounds),
        n_remove=np.array([res.n_removed for res in chunk_results], dtype=int),
        scores=_pad_scores(chunk_results, config.nkeep),
        noise_peaks=np.array([res.noise_peak for res in chunk_results]),
        found_noise=np.array([res.found_noise for res in chunk_results], dtype=bool),
        sigma=used_sigma,
        fixed_nremove=used_nremove,
        too_strong_once=state.too_strong_once,
        n_iterations=state.n_iterations,
        sigma_history=list(state.sigma_history),
        nremove_history=list(state.nremove_history),
        assessment=assessment,
        converged=assessment.acceptable,
        removed_power=power,
        freqs=freqs,
        psd_raw_log=pxx_raw_log.mean(axis=1),
        psd_clean_log=pxx_clean_log.mean(axis=1),
        psd_removed_log=pxx_removed_log.mean(axis=1),
    )
    return cleaned, result
