"""
Frequency search used to seed and extend the list of noise frequencies.

A window of fixed width slides across the channel-averaged log spectrum.
The centre bin is compared against the mean of the outer thirds of the
window; a detection starts on the first centre above the coarse threshold
and ends where the centre falls back below the relaxed threshold. The
strongest bin inside that stretch is the detected frequency.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Optional, Tuple

import numpy as np

from .errors import InvalidInputError

logger = logging.getLogger(__name__)


class NoisePeak(NamedTuple):
    """Outcome of one search.

    ``frequency`` and ``threshold`` are ``None`` when nothing qualified.
    ``window_freqs`` and ``window_power`` hold the last evaluated window.
    """

    frequency: Optional[float]
    threshold: Optional[float]
    window_freqs: np.ndarray
    window_power: np.ndarray


def _validate_inputs(pxx_log: np.ndarray, freqs: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    data = np.asarray(pxx_log, dtype=float)
    freq = np.asarray(freqs, dtype=float)
    if data.ndim == 1:
        data = data[:, np.newaxis]
    if data.ndim != 2:
        raise InvalidInputError("pxx_log must be a 1D or 2D array (n_freqs, n_channels).")
    if freq.ndim != 1 or freq.size != data.shape[0]:
        raise InvalidInputError(
            f"Frequency axis mismatch: {freq.size} frequencies for {data.shape[0]} spectral bins."
        )
    if freq.size < 3:
        raise InvalidInputError("At least 3 frequency bins are required to search for noise.")
    return data, freq


def find_next_noisefreq(
    pxx_log: np.ndarray,
    freqs: np.ndarray,
    minfreq: float = 0.0,
    threshdiff: float = 4.0,
    winsize_hz: float = 6.0,
    maxfreq: Optional[float] = None,
    lower_threshdiff: float = 1.76091259055681,
    include_minfreq: bool = True,
) -> NoisePeak:
    """Find the next narrow-band peak at or above ``minfreq``.

    Parameters
    ----------
    pxx_log : array_like, shape (n_freqs, n_channels)
        Log power spectrum (``10 * log10``). Channels are averaged.
    freqs : array_like, shape (n_freqs,)
        Frequency grid of ``pxx_log``.
    minfreq : float
        Lowest window centre in Hz.
    threshdiff : float
        The centre must exceed the flank mean by this much to start a
        detection.
    winsize_hz : float
        Width of the sliding window in Hz. The window may extend beyond
        ``[minfreq, maxfreq]``.
    maxfreq : float | None
        Highest window centre in Hz. Defaults to 85 % of the highest
        frequency.
    lower_threshdiff : float
        A started detection continues while the centre exceeds the flank
        mean by this much.
    include_minfreq : bool
        Whether a centre may sit exactly on ``minfreq``. Searches resumed
        past a cleaned frequency start strictly above it.

    Returns
    -------
    peak : NoisePeak
        Detected frequency and the coarse threshold that triggered it.
    """
    spectrum, freq = _validate_inputs(pxx_log, freqs)
    mean_power = np.mean(spectrum, axis=1)
    n_bins = freq.size

    if maxfreq is None:
        maxfreq = float(freq.max()) * 0.85

    span = float(freq.max() - freq.min())
    win_bins = max(int(round(n_bins / span * winsize_hz)), 3)
    win_bins = min(win_bins, n_bins)
    half = win_bins // 2
    third = max(int(round(win_bins / 3)), 1)

    side = "left" if include_minfreq else "right"
    first = max(int(np.searchsorted(freq, minfreq, side=side)), half)
    last = min(int(np.searchsorted(freq, maxfreq, side="right")) - 1, n_bins - (win_bins - half))
    if first > last:
        logger.debug(f"Empty search range {minfreq:.2f}-{maxfreq:.2f} Hz.")
        empty = np.empty(0)
        return NoisePeak(None, None, empty, empty)

    # flank means of every window, from cumulative sums
    centres = np.arange(first, last + 1)
    starts = centres - half
    stops = starts + win_bins
    csum = np.concatenate([[0.0], np.cumsum(mean_power)])
    flanks = (csum[starts + third] - csum[starts]) + (csum[stops] - csum[stops - third])
    reference = flanks / (2 * third)
    centre_power = mean_power[centres]

    above = centre_power > reference + threshdiff
    if not np.any(above):
        logger.debug(f"No noise peak between {minfreq:.2f} and {maxfreq:.2f} Hz.")
        return NoisePeak(None, None, freq[starts[-1]:stops[-1]], mean_power[starts[-1]:stops[-1]])

    k_start = int(np.argmax(above))
    threshold = float(reference[k_start] + threshdiff)

    still_above = centre_power[k_start + 1:] > reference[k_start + 1:] + lower_threshdiff
    if np.all(still_above):
        k_end = len(centres) - 1
        k_last = k_end
    else:
        k_end = k_start + int(np.argmin(still_above))
        k_last = k_end + 1

    extent = slice(centres[k_start], centres[k_end] + 1)
    peak_idx = centres[k_start] + int(np.argmax(mean_power[extent]))
    noisefreq = float(freq[peak_idx])
    logger.debug(f"Found noise peak at {noisefreq:.4f} Hz (threshold {threshold:.2f}).")

    window = slice(starts[k_last], stops[k_last])
    return NoisePeak(noisefreq, threshold, freq[window], mean_power[window])
