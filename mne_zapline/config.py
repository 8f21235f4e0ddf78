"""Configuration record for the ZapLine-plus pipeline.

A :class:`ZaplineConfig` is both the input and the output of a run: the
result of :func:`mne_zapline.zapline_plus` carries the effective
configuration, including every frequency that was cleaned, so that it can be
passed back to reproduce the same output.

Options may be given with their snake_case field names or with the
camelCase names used by the original Zapline-plus toolbox (``chunkLength``,
``noiseCompDetectSigma``, ...).
"""

from __future__ import annotations

import dataclasses
import logging
import numbers
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

from .errors import DegenerateSpectrumError, InvalidInputError

logger = logging.getLogger(__name__)

# camelCase spellings accepted for each field
_ALIASES: Dict[str, str] = {
    "adaptiveNremove": "adaptive_nremove",
    "fixedNremove": "fixed_nremove",
    "detectionWinsize": "detection_winsize",
    "coarseFreqDetectPowerDiff": "coarse_freq_detect_power_diff",
    "coarseFreqDetectLowerPowerDiff": "coarse_freq_detect_lower_power_diff",
    "searchIndividualNoise": "search_individual_noise",
    "freqDetectMultFine": "freq_detect_mult_fine",
    "detailedFreqBoundsUpper": "detailed_freq_bounds_upper",
    "detailedFreqBoundsLower": "detailed_freq_bounds_lower",
    "maxProportionAboveUpper": "max_proportion_above_upper",
    "maxProportionAboveLower": "max_proportion_below_lower",
    "maxProportionBelowLower": "max_proportion_below_lower",
    "noiseCompDetectSigma": "noise_comp_detect_sigma",
    "adaptiveSigma": "adaptive_sigma",
    "minsigma": "min_sigma",
    "minSigma": "min_sigma",
    "maxsigma": "max_sigma",
    "maxSigma": "max_sigma",
    "chunkLength": "chunk_length",
    "winSizeCompleteSpectrum": "win_size_complete_spectrum",
}


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, numbers.Integral) and value in (0, 1):
        return bool(value)
    raise InvalidInputError(f"{name} must be a boolean, got {value!r}.")


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, numbers.Real):
        raise InvalidInputError(f"{name} must be a real number, got {value!r}.")
    value = float(value)
    if not np.isfinite(value):
        raise InvalidInputError(f"{name} must be finite, got {value}.")
    return value


def _as_int(name: str, value: Any, minimum: int = 0) -> int:
    as_float = _as_float(name, value)
    if as_float != int(as_float):
        raise InvalidInputError(f"{name} must be an integer, got {value!r}.")
    if as_float < minimum:
        raise InvalidInputError(f"{name} must be >= {minimum}, got {value!r}.")
    return int(as_float)


def _as_bounds(name: str, value: Any) -> Tuple[float, float]:
    try:
        low, high = value
    except (TypeError, ValueError):
        raise InvalidInputError(
            f"{name} must be a pair (lower, upper) of offsets in Hz, got {value!r}."
        ) from None
    low = _as_float(name, low)
    high = _as_float(name, high)
    if low >= high:
        raise InvalidInputError(
            f"{name} lower offset must be smaller than the upper offset, got {value!r}."
        )
    return low, high


def _as_frequencies(value: Any) -> Tuple[float, ...]:
    if value is None:
        return ()
    if isinstance(value, numbers.Real):
        value = [value]
    try:
        freqs = tuple(_as_float("noisefreqs", freq) for freq in np.ravel(value))
    except TypeError:
        raise InvalidInputError(
            f"noisefreqs must be a frequency or a sequence of frequencies, got {value!r}."
        ) from None
    for freq in freqs:
        if freq <= 0:
            raise InvalidInputError(f"noisefreqs must be positive, got {freq}.")
    return freqs


def _normalize_keys(options: Mapping[str, Any]) -> Dict[str, Any]:
    """Map camelCase aliases onto field names and reject unknown keys."""
    field_names = {f.name for f in dataclasses.fields(ZaplineConfig)}
    normalized: Dict[str, Any] = {}
    for key, value in options.items():
        name = _ALIASES.get(key, key)
        if name not in field_names:
            raise InvalidInputError(f"Unknown configuration option {key!r}.")
        if name in normalized:
            raise InvalidInputError(f"Configuration option {name!r} given twice.")
        normalized[name] = value
    return normalized


@dataclass(frozen=True)
class ZaplineConfig:
    """Effective options of a ZapLine-plus run.

    Attributes
    ----------
    noisefreqs : tuple of float
        Frequencies to clean, in Hz. Empty means automatic detection.
    adaptive_nremove : bool
        Whether the number of removed components is chosen per chunk by
        outlier detection on the component scores.
    fixed_nremove : int
        Minimum number of components removed per chunk.
    minfreq, maxfreq : float
        Search range of the automatic noise frequency detection, in Hz.
    detection_winsize : float
        Width of the detection window around a noise frequency, in Hz.
    coarse_freq_detect_power_diff : float
        Power difference (10*log10 units) above the local baseline needed
        to start a detection.
    coarse_freq_detect_lower_power_diff : float
        Power difference above the local baseline that delimits the end of a
        detected peak.
    search_individual_noise : bool
        Whether the noise peak is searched individually in each chunk.
    freq_detect_mult_fine : float
        Multiplier of the baseline variability used for the fine detection
        and quality thresholds.
    detailed_freq_bounds_upper : tuple of float
        Offsets (Hz) around the noise frequency checked for remaining noise.
    detailed_freq_bounds_lower : tuple of float
        Offsets (Hz) around the noise frequency checked for over-cleaning.
    max_proportion_above_upper : float
        Largest tolerated proportion of bins above the upper threshold.
    max_proportion_below_lower : float
        Largest tolerated proportion of bins below the lower threshold.
    noise_comp_detect_sigma : float
        Initial sigma of the iterative outlier detection on component scores.
    adaptive_sigma : bool
        Whether sigma and the removal floor are adapted after each pass.
    min_sigma, max_sigma : float
        Bounds of the adapted sigma.
    chunk_length : float
        Chunk length in seconds. 0 uses the whole recording as one chunk.
    win_size_complete_spectrum : int
        Welch window in samples for spectra of the complete recording.
        0 derives it as ``sfreq * chunk_length``.
    nkeep : int
        Number of principal components kept before the removal. 0 keeps
        all channels.
    n_jobs : int
        Number of joblib workers used to clean the chunks of one pass.
    """

    noisefreqs: Tuple[float, ...] = ()
    adaptive_nremove: bool = True
    fixed_nremove: int = 1
    minfreq: float = 17.0
    maxfreq: float = 99.0
    detection_winsize: float = 6.0
    coarse_freq_detect_power_diff: float = 4.0
    coarse_freq_detect_lower_power_diff: float = 1.76091259055681
    search_individual_noise: bool = True
    freq_detect_mult_fine: float = 2.0
    detailed_freq_bounds_upper: Tuple[float, float] = (-0.05, 0.05)
    detailed_freq_bounds_lower: Tuple[float, float] = (-0.4, 0.1)
    max_proportion_above_upper: float = 0.005
    max_proportion_below_lower: float = 0.005
    noise_comp_detect_sigma: float = 3.0
    adaptive_sigma: bool = True
    min_sigma: float = 2.5
    max_sigma: float = 4.0
    chunk_length: float = 150.0
    win_size_complete_spectrum: int = 0
    nkeep: int = 0
    n_jobs: int = 1

    def __post_init__(self) -> None:
        def set_(name: str, value: Any) -> None:
            object.__setattr__(self, name, value)

        set_("noisefreqs", _as_frequencies(self.noisefreqs))
        for name in ("adaptive_nremove", "search_individual_noise", "adaptive_sigma"):
            set_(name, _as_bool(name, getattr(self, name)))
        for name in ("fixed_nremove", "win_size_complete_spectrum", "nkeep"):
            set_(name, _as_int(name, getattr(self, name)))
        for name in (
            "minfreq",
            "maxfreq",
            "detection_winsize",
            "coarse_freq_detect_power_diff",
            "coarse_freq_detect_lower_power_diff",
            "freq_detect_mult_fine",
            "max_proportion_above_upper",
            "max_proportion_below_lower",
            "noise_comp_detect_sigma",
            "min_sigma",
            "max_sigma",
            "chunk_length",
        ):
            set_(name, _as_float(name, getattr(self, name)))
        for name in ("detailed_freq_bounds_upper", "detailed_freq_bounds_lower"):
            set_(name, _as_bounds(name, getattr(self, name)))

        n_jobs = _as_float("n_jobs", self.n_jobs)
        if n_jobs == 0 or n_jobs != int(n_jobs):
            raise InvalidInputError(f"n_jobs must be a non-zero integer, got {self.n_jobs!r}.")
        set_("n_jobs", int(n_jobs))

        if self.minfreq < 0:
            raise InvalidInputError(f"minfreq must be non-negative, got {self.minfreq}.")
        if self.maxfreq <= self.minfreq:
            raise InvalidInputError(
                f"maxfreq ({self.maxfreq}) must be larger than minfreq ({self.minfreq})."
            )
        if self.detection_winsize <= 0:
            raise InvalidInputError(
                f"detection_winsize must be positive, got {self.detection_winsize}."
            )
        if self.freq_detect_mult_fine < 0:
            raise InvalidInputError(
                f"freq_detect_mult_fine must be non-negative, got {self.freq_detect_mult_fine}."
            )
        for name in ("max_proportion_above_upper", "max_proportion_below_lower"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise InvalidInputError(f"{name} must lie in [0, 1], got {getattr(self, name)}.")
        if self.min_sigma <= 0:
            raise InvalidInputError(f"min_sigma must be positive, got {self.min_sigma}.")
        if self.max_sigma < self.min_sigma:
            raise InvalidInputError(
                f"max_sigma ({self.max_sigma}) must not be smaller than min_sigma ({self.min_sigma})."
            )
        if not self.min_sigma <= self.noise_comp_detect_sigma <= self.max_sigma:
            raise InvalidInputError(
                f"noise_comp_detect_sigma ({self.noise_comp_detect_sigma}) must lie within "
                f"[min_sigma, max_sigma] = [{self.min_sigma}, {self.max_sigma}]."
            )
        if self.chunk_length < 0:
            raise InvalidInputError(
                f"chunk_length must be zero or a positive duration in seconds, got {self.chunk_length}."
            )

    # ------------------------------------------------------------------
    # Construction and serialization
    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "ZaplineConfig":
        """Build a configuration from a mapping of (possibly camelCase) options."""
        return cls(**_normalize_keys(options))

    def to_dict(self) -> Dict[str, Any]:
        """Return the options as a plain dictionary with snake_case keys."""
        options = dataclasses.asdict(self)
        options["noisefreqs"] = list(self.noisefreqs)
        options["detailed_freq_bounds_upper"] = list(self.detailed_freq_bounds_upper)
        options["detailed_freq_bounds_lower"] = list(self.detailed_freq_bounds_lower)
        return options

    def replace(self, **changes: Any) -> "ZaplineConfig":
        """Return a copy with some options changed."""
        return dataclasses.replace(self, **_normalize_keys(changes))

    @property
    def automatic_detection(self) -> bool:
        """Whether noise frequencies are detected automatically."""
        return len(self.noisefreqs) == 0

    def resolve(self, n_samples: int, n_channels: int, sfreq: float) -> "ZaplineConfig":
        """Replace the data-dependent zero defaults by their effective values.

        Parameters
        ----------
        n_samples : int
            Number of samples of the recording.
        n_channels : int
            Number of channels of the recording.
        sfreq : float
            Sampling frequency in Hz.

        Returns
        -------
        config : ZaplineConfig
            Configuration with ``chunk_length``, ``win_size_complete_spectrum``
            and ``nkeep`` set to the values actually used.

        Raises
        ------
        DegenerateSpectrumError
            If an explicit ``win_size_complete_spectrum`` exceeds the
            number of samples.
        """
        chunk_length = self.chunk_length
        if chunk_length == 0:
            chunk_length = n_samples / sfreq

        window = self.win_size_complete_spectrum
        if window == 0:
            window = int(round(sfreq * chunk_length))
            if window > n_samples:
                logger.info(
                    f"Recording is shorter than one chunk; using {n_samples} samples "
                    "as window for the complete spectrum."
                )
                window = n_samples
        elif window > n_samples:
            raise DegenerateSpectrumError(
                f"win_size_complete_spectrum ({window} samples) exceeds the "
                f"number of available samples ({n_samples})."
            )

        nkeep = self.nkeep
        if nkeep == 0 or nkeep > n_channels:
            nkeep = n_channels

        return dataclasses.replace(
            self,
            chunk_length=chunk_length,
            win_size_complete_spectrum=window,
            nkeep=nkeep,
        )


def make_config(
    config: Optional[Any] = None, **options: Any
) -> ZaplineConfig:
    """Normalize keyword options or a previous configuration into a record.

    Parameters
    ----------
    config : ZaplineConfig | dict | None
        A configuration returned by a previous run, or a mapping of options.
    **options
        Individual options. They take precedence over ``config``.

    Returns
    -------
    config : ZaplineConfig
        Validated configuration.
    """
    if config is None:
        return ZaplineConfig.from_dict(options)
    if isinstance(config, ZaplineConfig):
        return config.replace(**options) if options else config
    if isinstance(config, Mapping):
        merged = _normalize_keys(config)
        merged.update(_normalize_keys(options))
        return ZaplineConfig(**merged)
    raise InvalidInputError(
        f"config must be a ZaplineConfig or a mapping, got {type(config).__name__}."
    )
