"""ZapLine-plus Transformer API."""

from __future__ import annotations

from typing import Any, List, Optional

import mne
import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin

from .config import ZaplineConfig, make_config
from .core import ZaplinePlusResult, zapline_plus
from .errors import InvalidInputError


def _extract_data_and_info(X):
    """Extract data array and metadata from input.

    Returns
    -------
    data : ndarray
        Data array.
    sfreq : float or None
        Sampling frequency if available.
    input_type : str
        One of 'raw', 'epochs', 'array'.
    """
    if isinstance(X, mne.Evoked):
        raise TypeError(
            "Evoked objects are not supported by ZapLine-plus. "
            "It requires continuous or epoched data (Raw or Epochs)."
        )
    if isinstance(X, mne.io.BaseRaw):
        return X.get_data(), X.info["sfreq"], "raw"
    if isinstance(X, mne.BaseEpochs):
        return X.get_data(), X.info["sfreq"], "epochs"
    return np.asarray(X), None, "array"


def _apply_to_mne_object(X, cleaned_data, input_type):
    """Wrap cleaned data into a new MNE object of the input's type."""
    if input_type == "raw":
        out = mne.io.RawArray(cleaned_data, X.info.copy(), first_samp=X.first_samp, verbose=False)
        if X.annotations is not None:
            out.set_annotations(X.annotations)
        return out
    if input_type == "epochs":
        out = mne.EpochsArray(
            cleaned_data,
            X.info.copy(),
            events=X.events,
            tmin=X.tmin,
            event_id=X.event_id,
            verbose=False,
        )
        if X.metadata is not None:
            out.metadata = X.metadata.copy()
        return out
    return cleaned_data


class ZaplinePlus(BaseEstimator, TransformerMixin):
    """ZapLine-plus Transformer for adaptive line noise removal.

    Wraps :func:`~mne_zapline.zapline_plus` into a scikit-learn compatible
    transformer. ``fit`` runs the full adaptive pipeline (including the
    automatic frequency detection) and stores the effective configuration;
    ``transform`` re-applies that configuration.

    Parameters
    ----------
    sfreq : float, optional
        Sampling frequency in Hz. Required for array input.
    noisefreqs : float or list of float, optional
        Frequencies to clean. If None, they are detected automatically.
    chunk_length : float, optional
        Chunk length in seconds. 0 cleans the recording as one chunk.
        Defaults to 150.
    adaptive_sigma : bool, optional
        Whether the removal strength is adapted to the quality check.
        Defaults to True.
    nkeep : int, optional
        Number of principal components kept before the removal (0: all).
        Defaults to 0.
    n_jobs : int, optional
        Number of workers for the chunks of one pass. Defaults to 1.
    config : ZaplineConfig or dict, optional
        Further options, e.g. ``result.config`` of a previous run. Parameters
        above that are not None take precedence; the others keep the value
        from ``config``.

    Attributes
    ----------
    config_ : ZaplineConfig
        Effective configuration of the fit.
    result_ : ZaplinePlusResult
        Full result of the fit.
    noisefreqs_ : list of float
        Cleaned frequencies.
    n_remove_ : ndarray, shape (n_freqs, n_chunks)
        Components removed per frequency and chunk.
    """

    def __init__(
        self,
        sfreq: Optional[float] = None,
        noisefreqs: Optional[Any] = None,
        chunk_length: Optional[float] = None,
        adaptive_sigma: Optional[bool] = None,
        nkeep: Optional[int] = None,
        n_jobs: Optional[int] = None,
        config: Optional[Any] = None,
    ):
        self.sfreq = sfreq
        self.noisefreqs = noisefreqs
        self.chunk_length = chunk_length
        self.adaptive_sigma = adaptive_sigma
        self.nkeep = nkeep
        self.n_jobs = n_jobs
        self.config = config

        # Attributes (set during fit)
        self.config_ = None
        self.result_ = None
        self.noisefreqs_ = None
        self.n_remove_ = None

    def _build_config(self) -> ZaplineConfig:
        # only parameters set explicitly override ``config``
        explicit = dict(
            noisefreqs=self.noisefreqs,
            chunk_length=self.chunk_length,
            adaptive_sigma=self.adaptive_sigma,
            nkeep=self.nkeep,
            n_jobs=self.n_jobs,
        )
        options = {name: value for name, value in explicit.items() if value is not None}
        return make_config(self.config, **options)

    def _resolve_sfreq(self, mne_sfreq: Optional[float]) -> float:
        if self.sfreq is not None:
            return self.sfreq
        if mne_sfreq is not None:
            return mne_sfreq
        raise InvalidInputError("sfreq must be provided if X is not an MNE object.")

    @staticmethod
    def _as_continuous(data: np.ndarray) -> np.ndarray:
        if data.ndim == 3:
            n_epochs, n_ch, n_times = data.shape
            return np.transpose(data, (1, 0, 2)).reshape(n_ch, -1)
        return data

    @staticmethod
    def _restore_shape(cleaned: np.ndarray, data: np.ndarray) -> np.ndarray:
        if data.ndim == 3:
            n_epochs, n_ch, n_times = data.shape
            return cleaned.reshape(n_ch, n_epochs, n_times).transpose(1, 0, 2)
        return cleaned

    def _run(self, X, config: ZaplineConfig) -> ZaplinePlusResult:
        data, mne_sfreq, _ = _extract_data_and_info(X)
        sfreq = self._resolve_sfreq(mne_sfreq)
        return zapline_plus(self._as_continuous(data), sfreq, config=config)

    def _store(self, result: ZaplinePlusResult) -> None:
        self.result_ = result
        self.config_ = result.config
        self.noisefreqs_: List[float] = result.noisefreqs
        self.n_remove_ = result.n_remove_final

    def fit(self, X, y=None):
        """Run ZapLine-plus on X and store the effective configuration.

        Parameters
        ----------
        X : ndarray, shape (n_channels, n_times), or MNE Raw/Epochs
            Data to fit. Evoked objects are not supported.
        y : None
            Ignored.

        Returns
        -------
        self : ZaplinePlus
            Fitted transformer.
        """
        self._store(self._run(X, self._build_config()))
        return self

    def transform(self, X):
        """Clean data with the fitted configuration.

        Parameters
        ----------
        X : ndarray or MNE Raw/Epochs
            Data to clean. Evoked objects are not supported.

        Returns
        -------
        X_clean : ndarray or MNE object
            Cleaned data (same type as input).
        """
        if self.config_ is None:
            raise RuntimeError("ZaplinePlus must be fitted before transform.")
        data, _, input_type = _extract_data_and_info(X)
        result = self._run(X, self.config_)
        cleaned = self._restore_shape(result.cleaned, data)
        return _apply_to_mne_object(X, cleaned, input_type)

    def fit_transform(self, X, y=None, **fit_params):
        """Fit to X and return the cleaned data of the fit."""
        data, _, input_type = _extract_data_and_info(X)
        self.fit(X, y)
        cleaned = self._restore_shape(self.result_.cleaned, data)
        return _apply_to_mne_object(X, cleaned, input_type)
