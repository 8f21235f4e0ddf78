import matplotlib
import numpy as np
import pytest

# Force non-interactive backend for tests
matplotlib.use("Agg")


@pytest.fixture(autouse=True)
def close_plots():
    """Close all plots after each test to free memory."""
    yield
    import matplotlib.pyplot as plt

    plt.close("all")


@pytest.fixture(scope="session")
def line_noise_recording():
    """300 s of 32-channel white noise at 250 Hz plus 50 Hz line noise.

    Data are laid out as (n_samples, n_channels).
    """
    rng = np.random.default_rng(42)
    sfreq = 250
    n_channels = 32
    n_times = 300 * sfreq
    times = np.arange(n_times) / sfreq

    brain = rng.standard_normal((n_times, n_channels))
    topo = rng.uniform(1.0, 3.0, n_channels)
    line = np.sin(2 * np.pi * 50.0 * times)
    data = brain + np.outer(line, topo)

    return {"data": data, "sfreq": sfreq, "line_freq": 50.0, "times": times}


@pytest.fixture(scope="session")
def short_recording():
    """60 s of 8-channel white noise at 250 Hz plus 50 Hz line noise.

    Data are laid out as (n_samples, n_channels).
    """
    rng = np.random.default_rng(0)
    sfreq = 250
    n_channels = 8
    n_times = 60 * sfreq
    times = np.arange(n_times) / sfreq

    brain = rng.normal(0, 0.5, (n_times, n_channels))
    line = np.sin(2 * np.pi * 50.0 * times) * 3.0
    data = brain + line[:, np.newaxis]

    return {"data": data, "sfreq": sfreq, "line_freq": 50.0, "times": times}
