"""Component-based removal of a periodic noise source.

The adaptive controller only relies on the :class:`NoiseRemover` interface.
:class:`DSSLineRemover` is the default implementation, a DSS-based ZapLine
(de Cheveigné, 2020) operating on one chunk at a time.

References
----------
de Cheveigné, A. (2020). ZapLine: A simple and effective method to remove
    power line artifacts. NeuroImage, 207, 116356.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy import linalg
from scipy.ndimage import uniform_filter1d

from .errors import InvalidInputError


@dataclass(frozen=True)
class RemovalOptions:
    """Per-chunk options handed to a :class:`NoiseRemover`.

    Attributes
    ----------
    adaptive : bool
        Choose the number of removed components from the scores. If False,
        exactly the requested minimum is removed.
    sigma : float
        Threshold of the iterative outlier detection on the scores.
    nkeep : int
        Number of principal components kept before the decomposition.
        0 keeps all channels.
    """

    adaptive: bool = True
    sigma: float = 3.0
    nkeep: int = 0


@dataclass
class RemovalResult:
    """Output of a :class:`NoiseRemover`.

    Attributes
    ----------
    cleaned : ndarray, shape (n_samples, n_channels)
        Chunk with the noise components removed.
    n_removed : int
        Number of components removed.
    scores : ndarray, shape (n_components,)
        Artifact score of each component, in decreasing order.
    """

    cleaned: np.ndarray
    n_removed: int
    scores: np.ndarray


class NoiseRemover(ABC):
    """Interface of the removal step used by the adaptive controller.

    Implementations must not keep state between calls, so that chunks can
    be cleaned in any order or in parallel.
    """

    @abstractmethod
    def remove(
        self,
        chunk: np.ndarray,
        fline: float,
        n_remove_min: int,
        options: RemovalOptions,
    ) -> RemovalResult:
        """Remove the noise at ``fline`` from ``chunk``.

        Parameters
        ----------
        chunk : ndarray, shape (n_samples, n_channels)
            Data of one chunk.
        fline : float
            Noise frequency normalized by the sampling rate (cycles/sample).
        n_remove_min : int
            Minimum number of components to remove.
        options : RemovalOptions
            Removal options for this chunk.

        Returns
        -------
        result : RemovalResult
        """

    def __call__(self, chunk, fline, n_remove_min, options) -> RemovalResult:
        """Allow using the remover as a callable."""
        return self.remove(chunk, fline, n_remove_min, options)


def iterative_outlier_removal(scores: np.ndarray, sigma: float = 3.0) -> int:
    """Count outliers by repeatedly discarding values above mean + sigma * std.

    Non-finite scores (e.g. padding) are ignored.

    Parameters
    ----------
    scores : ndarray
        Component scores.
    sigma : float
        Sigma threshold. Default 3.0.

    Returns
    -------
    n_outliers : int
        Number of outliers detected.
    """
    remaining = np.asarray(scores, dtype=float)
    remaining = remaining[np.isfinite(remaining)]
    n_outliers = 0

    while len(remaining) > 2:
        threshold = np.mean(remaining) + sigma * np.std(remaining)
        outliers = remaining > threshold
        if not np.any(outliers):
            break
        n_outliers += int(np.sum(outliers))
        remaining = remaining[~outliers]

    return n_outliers


def _bias_fft(data: np.ndarray, fline: float, nfft: int) -> Tuple[np.ndarray, np.ndarray]:
    """Baseline and line-biased cross-spectral covariances.

    Parameters
    ----------
    data : ndarray, shape (n_samples, n_channels)
        Input data.
    fline : float
        Normalized line frequency. All harmonics below Nyquist are used.
    nfft : int
        FFT size of the segments.

    Returns
    -------
    c0 : ndarray, shape (n_channels, n_channels)
        Covariance over all frequency bins.
    c1 : ndarray, shape (n_channels, n_channels)
        Covariance over the bins of the line frequency and its harmonics.
    """
    n_samples, n_channels = data.shape
    nfft = min(nfft, n_samples)
    n_segments = n_samples // nfft

    segments = data[: n_segments * nfft].reshape(n_segments, nfft, n_channels)
    taper = np.hanning(nfft)[np.newaxis, :, np.newaxis]
    spectra = np.fft.rfft(segments * taper, axis=1)

    harmonics = fline * np.arange(1, int(np.floor(0.5 / fline)) + 1)
    bins = np.unique(np.round(harmonics * nfft).astype(int))
    bins = bins[(bins > 0) & (bins < spectra.shape[1])]

    c0 = np.einsum("sfi,sfj->ij", spectra.conj(), spectra).real / n_segments
    biased = spectra[:, bins]
    c1 = np.einsum("sfi,sfj->ij", biased.conj(), biased).real / n_segments
    return c0, c1


def _regress_out(data: np.ndarray, regressors: np.ndarray) -> np.ndarray:
    """Remove the least-squares projection of ``data`` on ``regressors``."""
    coeffs, *_ = np.linalg.lstsq(regressors, data, rcond=None)
    return data - regressors @ coeffs


class DSSLineRemover(NoiseRemover):
    """ZapLine removal of a line frequency and its harmonics.

    The chunk is split into a smooth part (moving average over one noise
    period, which cancels the noise and its harmonics) and a residual. DSS
    on the residual finds the components with the largest power ratio at
    the noise frequency; the strongest ones are regressed out of the
    residual.

    Parameters
    ----------
    nfft : int
        FFT size used for the biased covariance. Default 1024.
    reg : float
        Relative regularization of the baseline covariance. Default 1e-9.
    max_proportion : float
        Largest fraction of components removed in adaptive mode. The
        requested minimum is always honoured. Default 0.2.
    """

    def __init__(self, nfft: int = 1024, reg: float = 1e-9, max_proportion: float = 0.2):
        if nfft < 2:
            raise InvalidInputError(f"nfft must be at least 2, got {nfft}.")
        if not 0.0 < max_proportion <= 1.0:
            raise InvalidInputError(f"max_proportion must lie in (0, 1], got {max_proportion}.")
        self.nfft = nfft
        self.reg = reg
        self.max_proportion = max_proportion

    def _n_remove(self, scores: np.ndarray, n_remove_min: int, options: RemovalOptions) -> int:
        if not options.adaptive:
            return min(n_remove_min, len(scores))
        n_remove = max(iterative_outlier_removal(scores, options.sigma), n_remove_min)
        limit = max(int(np.floor(len(scores) * self.max_proportion)), n_remove_min)
        return min(n_remove, limit, len(scores))

    def _reduce(self, residual: np.ndarray, nkeep: int) -> np.ndarray:
        n_channels = residual.shape[1]
        if nkeep <= 0 or nkeep >= n_channels:
            return residual
        centered = residual - residual.mean(axis=0)
        eigvals, eigvecs = np.linalg.eigh(centered.T @ centered)
        pca = eigvecs[:, np.argsort(eigvals)[::-1][:nkeep]]
        return residual @ pca

    def remove(
        self,
        chunk: np.ndarray,
        fline: float,
        n_remove_min: int,
        options: RemovalOptions,
    ) -> RemovalResult:
        chunk = np.asarray(chunk, dtype=float)
        if chunk.ndim != 2:
            raise InvalidInputError(f"chunk must be 2D (n_samples, n_channels), got {chunk.shape}.")
        if not 0.0 < fline < 0.5:
            raise InvalidInputError(
                f"fline must be a normalized frequency in (0, 0.5), got {fline}."
            )

        period = max(int(round(1.0 / fline)), 1)
        smooth = uniform_filter1d(chunk, size=period, axis=0, mode="nearest")
        residual = chunk - smooth

        reduced = self._reduce(residual, options.nkeep)

        c0, c1 = _bias_fft(reduced, fline, self.nfft)
        c0 += self.reg * np.trace(c0) / c0.shape[0] * np.eye(c0.shape[0])
        eigvals, eigvecs = linalg.eigh(c1, c0)
        order = np.argsort(eigvals)[::-1]
        scores = eigvals[order]
        filters = eigvecs[:, order]

        n_remove = self._n_remove(scores, n_remove_min, options)
        if n_remove == 0:
            return RemovalResult(cleaned=chunk.copy(), n_removed=0, scores=scores)

        sources = reduced @ filters[:, :n_remove]
        cleaned = smooth + _regress_out(residual, sources)
        return RemovalResult(cleaned=cleaned, n_removed=n_remove, scores=scores)
