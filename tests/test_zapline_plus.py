"""End-to-end tests of the ZapLine-plus driver."""

from __future__ import annotations

import logging
from unittest.mock import patch

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import signal

from mne_zapline import ZaplineConfig, zapline_plus
from mne_zapline.errors import DegenerateSpectrumError, InvalidInputError
from mne_zapline.noise_detection import NoisePeak
from mne_zapline.removal import NoiseRemover, RemovalResult


class Passthrough(NoiseRemover):
    def remove(self, chunk, fline, n_remove_min, options):
        return RemovalResult(chunk.copy(), 0, np.zeros(chunk.shape[1]))


def get_power_at(data, freq, sfreq):
    """Channel-averaged Welch power at ``freq``; data are (n_times, n_ch)."""
    f, p = signal.welch(data, fs=sfreq, nperseg=int(sfreq), axis=0)
    idx = np.argmin(np.abs(f - freq))
    return np.mean(p[idx])


@pytest.fixture(scope="module")
def auto_result(line_noise_recording):
    rec = line_noise_recording
    return zapline_plus(rec["data"], rec["sfreq"])


# =============================================================================
# Automatic detection
# =============================================================================


def test_detects_and_removes_line_noise(auto_result, line_noise_recording):
    rec = line_noise_recording
    result = auto_result

    assert result.noise_found
    assert len(result.noisefreqs) == 1
    assert abs(result.noisefreqs[0] - 50.0) < 0.05
    assert result.cleaned.shape == rec["data"].shape
    assert_allclose(result.removed, rec["data"] - result.cleaned)

    before = get_power_at(rec["data"], 50.0, rec["sfreq"])
    after = get_power_at(result.cleaned, 50.0, rec["sfreq"])
    assert after < 0.05 * before

    before_broad = get_power_at(rec["data"], 20.0, rec["sfreq"])
    after_broad = get_power_at(result.cleaned, 20.0, rec["sfreq"])
    assert after_broad > 0.7 * before_broad


def test_result_matrices(auto_result):
    """Per-chunk matrices have one row per frequency and one column per chunk."""
    result = auto_result
    assert result.chunk_bounds == [(0, 37500), (37500, 75000)]
    assert result.n_remove_final.shape == (1, 2)
    assert np.all(result.n_remove_final >= 1)
    assert result.noise_peaks.shape == (1, 2)
    assert result.found_noise.shape == (1, 2)
    assert result.found_noise.all()
    assert result.scores.shape == (1, 2, 32)

    freq_result = result.frequency_results[0]
    assert freq_result.detection_threshold is not None
    assert freq_result.removed_power.at_noise > 0.5
    assert freq_result.n_iterations == len(freq_result.sigma_history)

    summary = result.summary()
    assert summary["n_chunks"] == 2
    assert summary["noisefreqs"] == result.noisefreqs


def test_config_records_run(auto_result):
    """The returned configuration is resolved and names the cleaned frequencies."""
    config = auto_result.config
    assert isinstance(config, ZaplineConfig)
    assert config.noisefreqs == tuple(auto_result.noisefreqs)
    assert not config.automatic_detection
    assert config.win_size_complete_spectrum == 37500
    assert config.nkeep == 32


def test_replay_reproduces_result(auto_result, line_noise_recording):
    rec = line_noise_recording
    again = zapline_plus(rec["data"], rec["sfreq"], config=auto_result.config)
    assert again.noisefreqs == auto_result.noisefreqs
    assert_allclose(again.cleaned, auto_result.cleaned)
    np.testing.assert_array_equal(again.n_remove_final, auto_result.n_remove_final)


def test_no_noise_leaves_data_unchanged(caplog):
    rng = np.random.default_rng(3)
    data = rng.standard_normal((60 * 250, 64))
    with caplog.at_level(logging.INFO, logger="mne_zapline"):
        result = zapline_plus(data, 250, chunkLength=10)

    assert not result.noise_found
    assert result.noisefreqs == []
    assert_allclose(result.cleaned, data)
    assert_allclose(result.removed, 0.0)
    assert result.n_remove_final.shape == (0, 6)
    assert result.scores.shape == (0, 6, 64)
    assert "No noise frequency found" in caplog.text


def test_detected_frequencies_are_searched_upwards(short_recording):
    """Each new search starts above the last cleaned frequency."""
    rec = short_recording
    empty = np.array([])
    peaks = [
        NoisePeak(20.0, 4.0, empty, empty),
        NoisePeak(30.0, 5.0, empty, empty),
        NoisePeak(None, None, empty, empty),
    ]
    with patch("mne_zapline.core.find_next_noisefreq", side_effect=peaks) as mock_find:
        result = zapline_plus(
            rec["data"], rec["sfreq"], remover=Passthrough(), adaptiveSigma=False
        )

    assert mock_find.call_count == 3
    assert mock_find.call_args_list[0].kwargs["minfreq"] == pytest.approx(17.0)
    assert mock_find.call_args_list[1].kwargs["minfreq"] == pytest.approx(20.05)
    assert mock_find.call_args_list[2].kwargs["minfreq"] == pytest.approx(30.05)
    assert mock_find.call_args_list[0].kwargs.get("include_minfreq", True)
    assert mock_find.call_args_list[1].kwargs["include_minfreq"] is False
    assert result.noisefreqs == [20.0, 30.0]
    assert [res.detection_threshold for res in result.frequency_results] == [4.0, 5.0]


# =============================================================================
# Explicit frequencies
# =============================================================================


def test_orientation_is_preserved(short_recording):
    rec = short_recording
    by_samples = zapline_plus(rec["data"], rec["sfreq"], noisefreqs=[50])
    by_channels = zapline_plus(rec["data"].T, rec["sfreq"], noisefreqs=[50])

    assert by_channels.cleaned.shape == rec["data"].T.shape
    assert by_channels.removed.shape == rec["data"].T.shape
    assert_allclose(by_channels.cleaned.T, by_samples.cleaned)


def test_single_chunk(short_recording):
    rec = short_recording
    result = zapline_plus(rec["data"], rec["sfreq"], noisefreqs=[50], chunkLength=0)
    assert result.n_remove_final.shape == (1, 1)
    assert result.chunk_bounds == [(0, len(rec["data"]))]
    assert result.config.chunk_length == pytest.approx(60.0)

    before = get_power_at(rec["data"], 50.0, rec["sfreq"])
    after = get_power_at(result.cleaned, 50.0, rec["sfreq"])
    assert after < 0.05 * before


def test_without_individual_search(short_recording):
    """The nominal frequency is cleaned in every chunk."""
    rec = short_recording
    with patch("mne_zapline.controller.detect_chunk_peak") as mock_detect:
        result = zapline_plus(
            rec["data"],
            rec["sfreq"],
            noisefreqs=[50],
            chunkLength=20,
            searchIndividualNoise=False,
        )
    mock_detect.assert_not_called()
    np.testing.assert_array_equal(result.noise_peaks, [[50.0, 50.0, 50.0]])
    assert not result.found_noise.any()


def test_custom_remover(short_recording):
    rec = short_recording
    result = zapline_plus(
        rec["data"], rec["sfreq"], noisefreqs=[50], remover=Passthrough(), adaptive_sigma=False
    )
    assert_allclose(result.cleaned, rec["data"])
    np.testing.assert_array_equal(result.n_remove_final, [[0]])


def test_high_sampling_rate_warns():
    rng = np.random.default_rng(0)
    data = rng.standard_normal((10000, 4))
    with pytest.warns(UserWarning, match="downsample"):
        zapline_plus(
            data, 1000, noisefreqs=[50], remover=Passthrough(), adaptive_sigma=False
        )


# =============================================================================
# Errors
# =============================================================================


@pytest.mark.parametrize(
    "data",
    [
        np.zeros(100),
        np.zeros((2, 100, 3)),
        np.zeros((0, 4)),
        np.full((100, 4), np.nan),
        np.ones((100, 4)) * 1j,
        np.array([["a", "b"], ["c", "d"]]),
    ],
)
def test_invalid_data(data):
    with pytest.raises(InvalidInputError):
        zapline_plus(data, 250, noisefreqs=[50])


@pytest.mark.parametrize("sfreq", [0, -250, np.nan, "250", True])
def test_invalid_sfreq(sfreq):
    with pytest.raises(InvalidInputError):
        zapline_plus(np.zeros((1000, 4)), sfreq, noisefreqs=[50])


class CountingRemover(Passthrough):
    def __init__(self):
        self.n_calls = 0

    def remove(self, chunk, fline, n_remove_min, options):
        self.n_calls += 1
        return super().remove(chunk, fline, n_remove_min, options)


def test_noisefreq_above_nyquist(short_recording):
    """Frequencies above Nyquist are rejected before any cleaning."""
    rec = short_recording
    remover = CountingRemover()
    with pytest.raises(InvalidInputError, match="noisefreqs.*Nyquist"):
        zapline_plus(
            rec["data"], rec["sfreq"], noisefreqs=[50, 130], remover=remover, adaptive_sigma=False
        )
    assert remover.n_calls == 0


def test_window_longer_than_data(short_recording):
    rec = short_recording
    with pytest.raises(DegenerateSpectrumError):
        zapline_plus(rec["data"], rec["sfreq"], noisefreqs=[50], winSizeCompleteSpectrum=10**6)


def test_unknown_option(short_recording):
    rec = short_recording
    with pytest.raises(InvalidInputError, match="notAnOption"):
        zapline_plus(rec["data"], rec["sfreq"], notAnOption=1)


def test_parallel_chunks_match_sequential(short_recording):
    """Cleaning chunks in parallel workers gives the sequential result."""
    rec = short_recording
    sequential = zapline_plus(rec["data"], rec["sfreq"], noisefreqs=[50], chunkLength=20, n_jobs=1)
    parallel = zapline_plus(rec["data"], rec["sfreq"], noisefreqs=[50], chunkLength=20, n_jobs=2)

    assert_allclose(parallel.cleaned, sequential.cleaned)
    np.testing.assert_array_equal(parallel.n_remove_final, sequential.n_remove_final)
    np.testing.assert_array_equal(parallel.noise_peaks, sequential.noise_peaks)
