"""ZapLine-plus: adaptive removal of narrow-band noise.

Implements the frequency-by-frequency driver of ZapLine-plus (Klug &
Kloosterman, 2022) around the DSS-based ZapLine removal (de Cheveigné, 2020).

References
----------
de Cheveigné, A. (2020). ZapLine: A simple and effective method to remove
    power line artifacts. NeuroImage, 207, 116356.

Klug, M., & Kloosterman, N. A. (2022). Zapline-plus: A Zapline extension
    for automatic and adaptive removal of frequency-specific noise artifacts
    in M/EEG. Human Brain Mapping, 43(9), 2743-2758.
"""

from __future__ import annotations

import logging
import numbers
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .config import ZaplineConfig, make_config
from .controller import FrequencyResult, clean_frequency
from .errors import InvalidInputError
from .noise_detection import find_next_noisefreq
from .removal import DSSLineRemover, NoiseRemover
from .spectrum import chunk_bounds, compute_log_psd

logger = logging.getLogger(__name__)

# =============================================================================
# Result dataclass
# =============================================================================


@dataclass
class ZaplinePlusResult:
    """Results from ZapLine-plus processing.

    Attributes
    ----------
    cleaned : ndarray
        Cleaned data, in the orientation of the input.
    removed : ndarray
        Removed noise (``data - cleaned``), in the orientation of the input.
    config : ZaplineConfig
        Effective configuration including every cleaned frequency. Passing
        it back to :func:`zapline_plus` reproduces this result.
    chunk_bounds : list of (int, int)
        Sample range of each chunk.
    frequency_results : list of FrequencyResult
        One record per cleaned frequency, in processing order.
    """

    cleaned: np.ndarray
    removed: np.ndarray
    config: ZaplineConfig
    chunk_bounds: List[Tuple[int, int]]
    frequency_results: List[FrequencyResult] = field(default_factory=list)

    @property
    def noisefreqs(self) -> List[float]:
        return list(self.config.noisefreqs)

    @property
    def noise_found(self) -> bool:
        """Whether any frequency was cleaned."""
        return len(self.frequency_results) > 0

    def _stack(self, attr: str, dtype: Any) -> np.ndarray:
        n_chunks = len(self.chunk_bounds)
        if not self.frequency_results:
            return np.empty((0, n_chunks), dtype=dtype)
        return np.vstack([getattr(res, attr) for res in self.frequency_results]).astype(dtype)

    @property
    def n_remove_final(self) -> np.ndarray:
        """Removed components, shape (n_freqs, n_chunks)."""
        return self._stack("n_remove", int)

    @property
    def noise_peaks(self) -> np.ndarray:
        """Cleaned frequency per chunk, shape (n_freqs, n_chunks)."""
        return self._stack("noise_peaks", float)

    @property
    def found_noise(self) -> np.ndarray:
        """Individual peak detections, shape (n_freqs, n_chunks)."""
        return self._stack("found_noise", bool)

    @property
    def scores(self) -> np.ndarray:
        """Component scores, shape (n_freqs, n_chunks, n_scores), NaN-padded."""
        n_chunks = len(self.chunk_bounds)
        width = max([self.config.nkeep] + [res.scores.shape[1] for res in self.frequency_results])
        scores = np.full((len(self.frequency_results), n_chunks, width), np.nan)
        for i, res in enumerate(self.frequency_results):
            scores[i, :, : res.scores.shape[1]] = res.scores
        return scores

    def summary(self) -> Dict[str, Any]:
        """Plain-dictionary overview of the run."""
        return {
            "noisefreqs": self.noisefreqs,
            "n_chunks": len(self.chunk_bounds),
            "n_remove_mean": [float(np.mean(res.n_remove)) for res in self.frequency_results],
            "converged": [res.converged for res in self.frequency_results],
            "proportion_removed": [res.removed_power.total for res in self.frequency_results],
            "proportion_removed_noise": [
                res.removed_power.at_noise for res in self.frequency_results
            ],
        }


# =============================================================================
# Input handling
# =============================================================================


def _prepare_data(data: Any) -> Tuple[np.ndarray, bool]:
    """Validate the recording and return it as (n_samples, n_channels)."""
    array = np.asarray(data)
    if array.ndim != 2:
        raise InvalidInputError(
            f"Data must be 2D (samples x channels or channels x samples), got shape {array.shape}."
        )
    if array.size == 0:
        raise InvalidInputError("Input data cannot be empty.")
    if not np.issubdtype(array.dtype, np.number) or np.iscomplexobj(array):
        raise InvalidInputError(f"Data must be real-valued, got dtype {array.dtype}.")
    array = array.astype(np.float64)
    if not np.all(np.isfinite(array)):
        raise InvalidInputError("Data contains NaN or infinite values.")

    transposed = array.shape[0] < array.shape[1]
    if transposed:
        array = array.T
    return array, transposed


def _check_sfreq(sfreq: Any) -> float:
    if isinstance(sfreq, bool) or not isinstance(sfreq, numbers.Real):
        raise InvalidInputError(f"sfreq must be a number, got {sfreq!r}.")
    sfreq = float(sfreq)
    if not np.isfinite(sfreq) or sfreq <= 0:
        raise InvalidInputError(f"sfreq must be a positive finite number, got {sfreq}.")
    if sfreq > 500:
        warnings.warn(
            f"Sampling rate is {sfreq:g} Hz. It is recommended to downsample the data "
            "to 250 Hz or 500 Hz before applying ZapLine-plus; results may be suboptimal.",
            UserWarning,
        )
    return sfreq


# =============================================================================
# ZapLine-plus driver
# =============================================================================


def zapline_plus(
    data: np.ndarray,
    sfreq: float,
    config: Optional[Any] = None,
    remover: Optional[NoiseRemover] = None,
    **options: Any,
) -> ZaplinePlusResult:
    """Remove narrow-band noise with adaptive ZapLine-plus.

    Every noise frequency is cleaned in turn on the output of the previous
    one. For each frequency the recording is split into chunks, the noise
    peak is refined per chunk, and the removal strength is adapted until the
    cleaned spectrum shows neither remaining noise nor an over-cleaning
    notch. With automatic detection, the cleaned spectrum is searched for
    further noise above each cleaned frequency.

    Parameters
    ----------
    data : ndarray, shape (n_samples, n_channels) or (n_channels, n_samples)
        Input data. The longer dimension is taken as time; the output has
        the orientation of the input.
    sfreq : float
        Sampling frequency in Hz.
    config : ZaplineConfig | dict | None
        Configuration, e.g. ``result.config`` of a previous run.
    remover : NoiseRemover | None
        Removal step. Defaults to :class:`~mne_zapline.removal.DSSLineRemover`.
    **options
        Individual options of :class:`~mne_zapline.config.ZaplineConfig`
        (snake_case or camelCase names). They override ``config``.

    Returns
    -------
    result : ZaplinePlusResult
        Cleaned data, effective configuration and per-chunk diagnostics.

    Examples
    --------
    >>> # Detect and remove all noise peaks between 17 and 99 Hz
    >>> result = zapline_plus(eeg_data, sfreq=250)
    >>> cleaned = result.cleaned

    >>> # Remove 50 Hz only, cleaning the whole recording as one chunk
    >>> result = zapline_plus(eeg_data, sfreq=250, noisefreqs=[50], chunkLength=0)

    >>> # Reproduce a previous run
    >>> again = zapline_plus(eeg_data, sfreq=250, config=result.config)
    """
    config = make_config(config, **options)
    sfreq = _check_sfreq(sfreq)
    original, transposed = _prepare_data(data)
    n_samples, n_channels = original.shape

    config = config.resolve(n_samples, n_channels, sfreq)
    nyquist = sfreq / 2.0
    above_nyquist = [freq for freq in config.noisefreqs if freq >= nyquist]
    if above_nyquist:
        raise InvalidInputError(
            f"noisefreqs {above_nyquist} are at or above Nyquist ({nyquist:g} Hz)."
        )
    if remover is None:
        remover = DSSLineRemover()

    noisefreqs: List[float] = list(config.noisefreqs)
    automatic = config.automatic_detection
    thresholds: Dict[int, Optional[float]] = {}

    if automatic:
        logger.info("Computing initial spectrum...")
        freqs, _, pxx_raw_log = compute_log_psd(
            original, sfreq, config.win_size_complete_spectrum
        )
        logger.info(
            f"Searching for first noise frequency between {config.minfreq:g} and "
            f"{config.maxfreq:g} Hz..."
        )
        peak = find_next_noisefreq(
            pxx_raw_log,
            freqs,
            minfreq=config.minfreq,
            threshdiff=config.coarse_freq_detect_power_diff,
            winsize_hz=config.detection_winsize,
            maxfreq=config.maxfreq,
            lower_threshdiff=config.coarse_freq_detect_lower_power_diff,
        )
        if peak.frequency is not None:
            noisefreqs.append(peak.frequency)
            thresholds[0] = peak.threshold

    working = original
    frequency_results: List[FrequencyResult] = []

    # the list may grow while it is processed
    i_freq = 0
    while i_freq < len(noisefreqs):
        frequency = noisefreqs[i_freq]
        working, freq_result = clean_frequency(working, sfreq, frequency, config, remover)
        freq_result.detection_threshold = thresholds.get(i_freq)
        frequency_results.append(freq_result)

        if automatic:
            start = frequency + config.detailed_freq_bounds_upper[1]
            logger.info(
                f"Searching for next noise frequency between {start:g} and {config.maxfreq:g} Hz..."
            )
            peak = find_next_noisefreq(
                freq_result.psd_clean_log,
                freq_result.freqs,
                minfreq=start,
                threshdiff=config.coarse_freq_detect_power_diff,
                winsize_hz=config.detection_winsize,
                maxfreq=config.maxfreq,
                lower_threshdiff=config.coarse_freq_detect_lower_power_diff,
                include_minfreq=False,
            )
            if peak.frequency is not None:
                noisefreqs.append(peak.frequency)
                thresholds[len(noisefreqs) - 1] = peak.threshold
        i_freq += 1

    if frequency_results:
        logger.info(f"Cleaning with ZapLine-plus done! Cleaned frequencies: {noisefreqs}")
    else:
        logger.info("No noise frequency found; the data were not modified.")

    cleaned = working
    removed = original - cleaned
    if transposed:
        cleaned, removed = cleaned.T, removed.T

    return ZaplinePlusResult(
        cleaned=cleaned,
        removed=removed,
        config=config.replace(noisefreqs=noisefreqs),
        chunk_bounds=chunk_bounds(n_samples, sfreq, config.chunk_length),
        frequency_results=frequency_results,
    )
