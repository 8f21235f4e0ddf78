"""Unit tests for spectral estimation and chunking."""

from __future__ import annotations

import numpy as np
import pytest
from numpy.testing import assert_allclose

from mne_zapline.errors import DegenerateSpectrumError
from mne_zapline.spectrum import (
    band_baseline,
    band_mask,
    chunk_bounds,
    compute_chunk_log_psd,
    compute_log_psd,
    removed_power,
)


# =============================================================================
# Chunking
# =============================================================================


@pytest.mark.parametrize(
    "n_samples, sfreq, chunk_length, n_chunks",
    [
        (75000, 250, 150, 2),
        (75001, 250, 150, 2),
        (1000, 100, 3, 3),
        (1000, 100, 2.5, 4),
        (100, 100, 5, 1),
        (1000, 100, 0, 1),
        (7, 1, 1, 7),
    ],
)
def test_chunk_bounds_partition(n_samples, sfreq, chunk_length, n_chunks):
    """Chunks cover the recording once and the last one is the longest."""
    bounds = chunk_bounds(n_samples, sfreq, chunk_length)
    assert len(bounds) == n_chunks
    assert bounds[0][0] == 0
    assert bounds[-1][1] == n_samples
    for (_, stop), (start, _) in zip(bounds[:-1], bounds[1:]):
        assert stop == start
    lengths = [stop - start for start, stop in bounds]
    assert all(length > 0 for length in lengths)
    assert lengths[-1] == max(lengths)


def test_last_chunk_absorbs_remainder():
    """Leftover samples go to the last chunk."""
    bounds = chunk_bounds(1000, 100, 3)
    assert bounds == [(0, 300), (300, 600), (600, 1000)]


# =============================================================================
# Welch spectrum
# =============================================================================


def test_compute_log_psd_shapes():
    """Spectra have one column per channel and a power-of-two FFT."""
    rng = np.random.default_rng(42)
    data = rng.standard_normal((1000, 3))
    freqs, pxx, pxx_log = compute_log_psd(data, 100.0, 200)

    assert freqs.shape == (129,)  # nfft = 256
    assert pxx.shape == (129, 3)
    assert_allclose(pxx_log, 10 * np.log10(pxx))
    assert freqs[-1] == pytest.approx(50.0)


def test_compute_log_psd_peak_location():
    """A sine shows up at its frequency."""
    sfreq = 100.0
    times = np.arange(2000) / sfreq
    data = np.sin(2 * np.pi * 10.0 * times)[:, np.newaxis]
    freqs, _, pxx_log = compute_log_psd(data, sfreq, 1000)
    assert abs(freqs[np.argmax(pxx_log[:, 0])] - 10.0) < 0.1


def test_chunk_spectrum_uses_whole_chunk():
    """The chunk spectrum resolution follows the chunk length."""
    data = np.random.default_rng(0).standard_normal((5000, 2))
    freqs, pxx_log = compute_chunk_log_psd(data, 250.0)
    assert len(freqs) == 8192 // 2 + 1
    assert pxx_log.shape == (len(freqs), 2)


@pytest.mark.parametrize("window", [1, 1001])
def test_compute_log_psd_degenerate_window(window):
    """Windows shorter than 2 samples or longer than the data are rejected."""
    data = np.zeros((1000, 2))
    with pytest.raises(DegenerateSpectrumError):
        compute_log_psd(data, 100.0, window)


# =============================================================================
# Baseline and windows
# =============================================================================


def test_band_mask_is_open_interval():
    """Window edges are excluded."""
    freqs = np.arange(0.0, 11.0)
    mask = band_mask(freqs, 5.0, (-2.0, 2.0))
    assert_allclose(freqs[mask], [4.0, 5.0, 6.0])


def test_band_baseline_ignores_middle_third():
    """The peak in the middle third does not affect the baseline."""
    profile = np.concatenate([np.zeros(10), np.full(9, 30.0), np.zeros(11)])
    center, variability = band_baseline(profile)
    assert center == pytest.approx(0.0)
    assert variability == pytest.approx(0.0)


def test_band_baseline_flank_split():
    """The upper flank starts on the last bin of the middle third."""
    center, variability = band_baseline(np.arange(9.0))
    # flanks are [0, 1, 2] and [5, 6, 7, 8]
    assert center == pytest.approx(29 / 7)
    assert variability == pytest.approx((0.1 + 5.15) / 2)


def test_band_baseline_variability_below_center():
    """Variability is a lower quantile of the flanks."""
    flank = np.tile([-1.0, 1.0], 5)
    profile = np.concatenate([flank, np.zeros(10), flank])
    center, variability = band_baseline(profile)
    assert center == pytest.approx(0.0)
    assert variability == pytest.approx(-1.0)


def test_band_baseline_too_few_bins():
    """Fewer than three bins cannot be split into thirds."""
    with pytest.raises(DegenerateSpectrumError):
        band_baseline(np.array([1.0, 2.0]))


def test_removed_power():
    """Removed power proportions are relative to the raw power."""
    freqs = np.linspace(0, 100, 1001)
    pxx_raw = np.ones((1001, 2))
    pxx_clean = pxx_raw.copy()
    pxx_clean[(freqs >= 50 - 0.1) & (freqs <= 50 + 0.1)] = 0.1

    power = removed_power(freqs, pxx_raw, pxx_clean, 50.0)
    assert power.below_noise == pytest.approx(0.0)
    assert power.at_noise == pytest.approx(0.9)
    assert 0.0 < power.total < 0.01
