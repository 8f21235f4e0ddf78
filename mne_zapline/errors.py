"""Exceptions raised by the ZapLine-plus pipeline."""

from __future__ import annotations


class InvalidInputError(ValueError):
    """Raised when data, sampling rate or a configuration value is invalid.

    The message always names the offending argument or configuration field.
    """


class DegenerateSpectrumError(ValueError):
    """Raised when a spectral window cannot be evaluated.

    This happens when a Welch window is longer than the available samples,
    or when a detection window around a noise frequency contains too few
    frequency bins to compute a baseline.
    """
