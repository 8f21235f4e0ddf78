"""Tests for the sliding-window noise frequency search."""

from __future__ import annotations

import numpy as np
import pytest

from mne_zapline.errors import InvalidInputError
from mne_zapline.noise_detection import find_next_noisefreq


@pytest.fixture
def spectrum():
    """Flat two-channel log spectrum, 0-125 Hz in 0.1 Hz steps."""
    freqs = np.linspace(0, 125, 1251)
    pxx_log = np.zeros((len(freqs), 2))
    return freqs, pxx_log


def _idx(freqs, freq):
    return int(np.argmin(np.abs(freqs - freq)))


def test_finds_single_peak(spectrum):
    """A narrow peak above the coarse threshold is found."""
    freqs, pxx_log = spectrum
    pxx_log[_idx(freqs, 50), 0] = 20.0  # channel mean is 10

    peak = find_next_noisefreq(pxx_log, freqs, minfreq=17, maxfreq=99)
    assert peak.frequency == pytest.approx(50.0)
    assert peak.threshold == pytest.approx(4.0)
    assert len(peak.window_freqs) == len(peak.window_power) > 0


def test_accepts_channel_averaged_spectrum(spectrum):
    """A 1D spectrum is treated as a single channel."""
    freqs, pxx_log = spectrum
    pxx_log[_idx(freqs, 50)] = 10.0
    peak = find_next_noisefreq(pxx_log.mean(axis=1), freqs, minfreq=17, maxfreq=99)
    assert peak.frequency == pytest.approx(50.0)


def test_lower_threshold_delimits_peak(spectrum):
    """The detection extends while the relaxed threshold is exceeded."""
    freqs, pxx_log = spectrum
    pxx_log[495] = 5.0
    pxx_log[496:502] = 3.0
    pxx_log[502] = 8.0

    peak = find_next_noisefreq(pxx_log, freqs, minfreq=17, maxfreq=99)
    assert peak.frequency == pytest.approx(freqs[502])

    strict = find_next_noisefreq(
        pxx_log, freqs, minfreq=17, maxfreq=99, lower_threshdiff=3.5
    )
    assert strict.frequency == pytest.approx(freqs[495])


def test_below_threshold_is_not_detected(spectrum):
    """Peaks smaller than the coarse threshold are ignored."""
    freqs, pxx_log = spectrum
    pxx_log[_idx(freqs, 50)] = 3.0
    peak = find_next_noisefreq(pxx_log, freqs, minfreq=17, maxfreq=99)
    assert peak.frequency is None
    assert peak.threshold is None


def test_respects_ceiling(spectrum):
    """Peaks above maxfreq are not reported."""
    freqs, pxx_log = spectrum
    pxx_log[_idx(freqs, 80)] = 10.0
    assert find_next_noisefreq(pxx_log, freqs, minfreq=17, maxfreq=70).frequency is None
    assert find_next_noisefreq(pxx_log, freqs, minfreq=17, maxfreq=99).frequency == pytest.approx(80.0)


def test_empty_search_range(spectrum):
    """An empty range returns no frequency."""
    freqs, pxx_log = spectrum
    pxx_log[_idx(freqs, 50)] = 10.0
    assert find_next_noisefreq(pxx_log, freqs, minfreq=60, maxfreq=59).frequency is None


def test_exclusive_floor(spectrum):
    """A peak exactly on the floor is skipped when the floor is exclusive."""
    freqs, pxx_log = spectrum
    idx = _idx(freqs, 50)
    pxx_log[idx] = 10.0
    floor = freqs[idx]

    inclusive = find_next_noisefreq(pxx_log, freqs, minfreq=floor, maxfreq=99)
    assert inclusive.frequency == pytest.approx(50.0)
    exclusive = find_next_noisefreq(
        pxx_log, freqs, minfreq=floor, maxfreq=99, include_minfreq=False
    )
    assert exclusive.frequency is None


def test_repeated_search_terminates(spectrum):
    """Advancing the floor past each peak finds every peak, then none."""
    freqs, pxx_log = spectrum
    for freq in (50, 60, 80):
        pxx_log[_idx(freqs, freq)] = 10.0

    found = []
    minfreq = 17.0
    for _ in range(10):
        peak = find_next_noisefreq(pxx_log, freqs, minfreq=minfreq, maxfreq=99)
        if peak.frequency is None:
            break
        found.append(peak.frequency)
        minfreq = peak.frequency + 0.05
    else:
        pytest.fail("search did not terminate")

    assert found == pytest.approx([50.0, 60.0, 80.0])


def test_deterministic(spectrum):
    """Repeated calls on the same spectrum agree."""
    freqs, pxx_log = spectrum
    rng = np.random.default_rng(42)
    pxx_log += rng.normal(0, 0.5, pxx_log.shape)
    pxx_log[_idx(freqs, 50)] += 10.0
    first = find_next_noisefreq(pxx_log, freqs, minfreq=17, maxfreq=99)
    second = find_next_noisefreq(pxx_log, freqs, minfreq=17, maxfreq=99)
    assert first.frequency == second.frequency
    assert first.threshold == second.threshold


def test_invalid_inputs(spectrum):
    """Shape mismatches are reported."""
    freqs, pxx_log = spectrum
    with pytest.raises(InvalidInputError):
        find_next_noisefreq(pxx_log[:-1], freqs)
    with pytest.raises(InvalidInputError):
        find_next_noisefreq(np.zeros((len(freqs), 2, 2)), freqs)
