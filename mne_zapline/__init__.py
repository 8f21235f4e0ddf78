"""MNE-ZapLine: adaptive removal of line noise for MNE-Python.

Modules
-------
- `core`: the ZapLine-plus driver :func:`zapline_plus`.
- `controller`: adaptive cleaning of one noise frequency.
- `removal`: DSS-based ZapLine removal of one chunk.
- `estimator`: scikit-learn transformer working on arrays and MNE objects.
- `viz`: plots of the result records.
"""

from .config import ZaplineConfig, make_config
from .controller import FrequencyResult
from .core import ZaplinePlusResult, zapline_plus
from .errors import DegenerateSpectrumError, InvalidInputError
from .estimator import ZaplinePlus
from .noise_detection import find_next_noisefreq
from .removal import DSSLineRemover, NoiseRemover, RemovalOptions, RemovalResult

__version__ = "0.1.0"

__all__ = [
    "zapline_plus",
    "ZaplinePlus",
    "ZaplineConfig",
    "ZaplinePlusResult",
    "FrequencyResult",
    "make_config",
    "find_next_noisefreq",
    "NoiseRemover",
    "DSSLineRemover",
    "RemovalOptions",
    "RemovalResult",
    "InvalidInputError",
    "DegenerateSpectrumError",
]
