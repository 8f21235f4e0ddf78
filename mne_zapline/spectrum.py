"""Spectral estimation and chunking helpers.

All functions work on data laid out as ``(n_samples, n_channels)``.
"""

from __future__ import annotations

from typing import List, NamedTuple, Tuple

import numpy as np
from scipy import signal

from .errors import DegenerateSpectrumError


class RemovedPower(NamedTuple):
    """Proportions of spectral power removed by one cleaning pass."""

    total: float
    below_noise: float
    at_noise: float


def _nfft(window: int) -> int:
    return max(256, int(2 ** np.ceil(np.log2(window))))


def compute_log_psd(
    data: np.ndarray,
    sfreq: float,
    window: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Welch power spectrum of every channel and its log transform.

    Parameters
    ----------
    data : ndarray, shape (n_samples, n_channels)
        Input data.
    sfreq : float
        Sampling frequency in Hz.
    window : int
        Length of the Hann window in samples. Segments overlap by half a
        window and the FFT length is the next power of two (at least 256).

    Returns
    -------
    freqs : ndarray, shape (n_freqs,)
        Frequency bins in Hz.
    pxx : ndarray, shape (n_freqs, n_channels)
        Power spectral density.
    pxx_log : ndarray, shape (n_freqs, n_channels)
        ``10 * log10(pxx)``.

    Raises
    ------
    DegenerateSpectrumError
        If ``window`` is shorter than 2 samples or longer than the data.
    """
    window = int(window)
    n_samples = data.shape[0]
    if window < 2:
        raise DegenerateSpectrumError(f"Welch window must span at least 2 samples, got {window}.")
    if window > n_samples:
        raise DegenerateSpectrumError(
            f"Welch window ({window} samples) exceeds the number of available samples ({n_samples})."
        )

    # symmetric Hann window without the zero end points
    win = signal.windows.hann(window + 2)[1:-1]
    freqs, pxx = signal.welch(
        data,
        fs=sfreq,
        window=win,
        nperseg=window,
        noverlap=window // 2,
        nfft=_nfft(window),
        detrend=False,
        axis=0,
    )
    pxx_log = 10.0 * np.log10(np.maximum(pxx, np.finfo(np.float64).tiny))
    return freqs, pxx, pxx_log


def compute_chunk_log_psd(chunk: np.ndarray, sfreq: float) -> Tuple[np.ndarray, np.ndarray]:
    """Log spectrum of a chunk with maximal frequency resolution.

    A single Hann window spans the whole chunk.
    """
    freqs, _, pxx_log = compute_log_psd(chunk, sfreq, chunk.shape[0])
    return freqs, pxx_log


def chunk_bounds(n_samples: int, sfreq: float, chunk_length: float) -> List[Tuple[int, int]]:
    """Split ``[0, n_samples)`` into contiguous chunks.

    Parameters
    ----------
    n_samples : int
        Number of samples of the recording.
    sfreq : float
        Sampling frequency in Hz.
    chunk_length : float
        Chunk length in seconds. 0 returns one chunk spanning the recording.

    Returns
    -------
    bounds : list of (int, int)
        ``(start, stop)`` sample indices. The last chunk absorbs the
        remainder, so it is never shorter than the others.
    """
    if chunk_length <= 0:
        return [(0, n_samples)]
    chunk_samples = max(int(round(chunk_length * sfreq)), 1)
    n_chunks = max(n_samples // chunk_samples, 1)
    starts = [i * chunk_samples for i in range(n_chunks)]
    stops = starts[1:] + [n_samples]
    return list(zip(starts, stops))


def band_mask(freqs: np.ndarray, center: float, bounds: Tuple[float, float]) -> np.ndarray:
    """Bins strictly inside ``(center + bounds[0], center + bounds[1])``."""
    return (freqs > center + bounds[0]) & (freqs < center + bounds[1])


def detection_window(freqs: np.ndarray, frequency: float, winsize: float) -> np.ndarray:
    """Bins within ``winsize`` Hz centred on ``frequency``."""
    return band_mask(freqs, frequency, (-winsize / 2.0, winsize / 2.0))


def band_baseline(profile: np.ndarray) -> Tuple[float, float]:
    """Estimate the spectral level around a peak from the flanks of a window.

    The middle third of ``profile`` contains the peak and is ignored. The
    center is the mean of the two outer thirds. The variability estimate is
    the mean of the 5 % quantiles of the outer thirds; lower quantiles are
    used because upper ones are inflated by the noise being measured.

    Parameters
    ----------
    profile : ndarray, shape (n_bins,)
        Channel-averaged log power inside a detection window.

    Returns
    -------
    center : float
        Mean level of the flanks.
    variability : float
        Mean lower quantile of the flanks.
    """
    profile = np.asarray(profile, dtype=float)
    if profile.size < 3:
        raise DegenerateSpectrumError(
            f"Detection window contains {profile.size} frequency bins; at least 3 are required."
        )
    third = int(round(profile.size / 3))
    lower = profile[:third]
    # the upper flank shares its first bin with the middle third
    upper = profile[2 * third - 1:]
    center = float(np.mean(np.concatenate([lower, upper])))
    variability = float(np.mean([np.percentile(lower, 5), np.percentile(upper, 5)]))
    return center, variability


def removed_power(
    freqs: np.ndarray,
    pxx_raw: np.ndarray,
    pxx_clean: np.ndarray,
    frequency: float,
) -> RemovedPower:
    """Proportion of power removed overall, below and at ``frequency``.

    "Below" covers bins up to ``frequency - 1`` Hz and "at" covers
    ``frequency +/- 0.1`` Hz. An empty range yields NaN.
    """

    def _proportion(mask: np.ndarray) -> float:
        if not np.any(mask):
            return float("nan")
        raw = float(np.mean(pxx_raw[mask]))
        clean = float(np.mean(pxx_clean[mask]))
        return (raw - clean) / raw

    all_bins = np.ones(freqs.shape, dtype=bool)
    return RemovedPower(
        total=_proportion(all_bins),
        below_noise=_proportion(freqs <= frequency - 1),
        at_noise=_proportion((freqs >= frequency - 0.1) & (freqs <= frequency + 0.1)),
    )
