"""Visualization of ZapLine-plus results.

All functions are driven by the result records returned by
:func:`~mne_zapline.zapline_plus`; they never recompute spectra.

Functions
---------
plot_frequency_result
    Four-panel overview of the cleaning of one noise frequency.
plot_zapline_summary
    Spectrum before and after cleaning all frequencies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import matplotlib.pyplot as plt
import numpy as np

if TYPE_CHECKING:
    from .controller import FrequencyResult
    from .core import ZaplinePlusResult

_RAW_COLOR = (0.2, 0.2, 0.2)
_CLEAN_COLOR = (0.0, 97 / 256, 100 / 256)
_REMOVED_COLOR = (230 / 256, 100 / 256, 50 / 256)


def _empty_axes(ax: plt.Axes, message: str) -> plt.Axes:
    ax.text(0.5, 0.5, message, ha="center", va="center", transform=ax.transAxes, fontsize=12)
    return ax


def plot_frequency_result(
    freq_result: "FrequencyResult",
    zoom: float = 1.1,
    show: bool = True,
) -> plt.Figure:
    """Summarize the cleaning of one noise frequency.

    Parameters
    ----------
    freq_result : FrequencyResult
        Record of one frequency from ``ZaplinePlusResult.frequency_results``.
    zoom : float
        Half-width in Hz of the spectrum shown around the noise frequency.
    show : bool
        Whether to call plt.show().

    Returns
    -------
    fig : Figure
        Figure with the spectrum around the noise frequency, the removed
        components and noise peaks per chunk, and the mean component scores.
    """
    fig, axes = plt.subplots(2, 2, figsize=(12, 7))
    ax_psd, ax_nremove, ax_peaks, ax_scores = axes.ravel()
    frequency = freq_result.frequency

    # spectrum around the noise frequency
    freqs = freq_result.freqs
    mask = (freqs >= frequency - zoom) & (freqs <= frequency + zoom)
    assessment = freq_result.assessment
    ax_psd.plot(freqs[mask], freq_result.psd_raw_log[mask], color=_RAW_COLOR, label="Raw")
    ax_psd.plot(freqs[mask], freq_result.psd_clean_log[mask], color=_CLEAN_COLOR, label="Cleaned")
    ax_psd.axhline(
        assessment.threshold_upper,
        color=_REMOVED_COLOR,
        linestyle="--",
        label=f"{assessment.proportion_above_upper * 100:.2f}% above",
    )
    ax_psd.axhline(
        assessment.threshold_lower,
        color=_CLEAN_COLOR,
        linestyle=":",
        label=f"{assessment.proportion_below_lower * 100:.2f}% below",
    )
    ax_psd.set_xlabel("Frequency (Hz)")
    ax_psd.set_ylabel("Power (10*log10 μV²/Hz)")
    ax_psd.set_title(f"Noise frequency: {frequency:.2f} Hz")
    ax_psd.legend(fontsize=8)

    # removed components per chunk
    chunks = np.arange(1, freq_result.n_chunks + 1)
    ax_nremove.bar(chunks, freq_result.n_remove, color=_REMOVED_COLOR, alpha=0.8)
    ax_nremove.set_xlabel("Chunk")
    ax_nremove.set_ylabel("# removed components")
    ax_nremove.set_title(
        f"Removed components, μ = {np.mean(freq_result.n_remove):.2f} "
        f"(σ = {freq_result.sigma:g})"
    )

    # individual noise peaks
    found = freq_result.found_noise
    ax_peaks.plot(chunks, freq_result.noise_peaks, color=_RAW_COLOR, alpha=0.5)
    ax_peaks.scatter(chunks[found], freq_result.noise_peaks[found], color=_REMOVED_COLOR, label="Found")
    ax_peaks.scatter(
        chunks[~found], freq_result.noise_peaks[~found], color=_RAW_COLOR, marker="x", label="Not found"
    )
    ax_peaks.axhline(frequency, color="gray", linestyle="--", alpha=0.5)
    ax_peaks.set_xlabel("Chunk")
    ax_peaks.set_ylabel("Peak frequency (Hz)")
    ax_peaks.set_title(f"Individual noise peaks ({int(found.sum())}/{len(found)} found)")
    ax_peaks.legend(fontsize=8)

    # mean component scores
    scores = freq_result.scores
    if scores.size == 0 or np.all(np.isnan(scores)):
        _empty_axes(ax_scores, "No scores available")
    else:
        mean_scores = np.nanmean(scores, axis=0)
        components = np.arange(1, len(mean_scores) + 1)
        ax_scores.plot(components, mean_scores, color=_RAW_COLOR, marker="o", markersize=3)
        ax_scores.axvline(
            np.mean(freq_result.n_remove) + 0.5,
            color=_REMOVED_COLOR,
            linestyle="--",
            label="Mean removed",
        )
        ax_scores.set_xlim(0.5, max(len(mean_scores) / 3, 3))
        ax_scores.set_xlabel("Component")
        ax_scores.set_ylabel("Score")
        ax_scores.set_title("Mean component scores")
        ax_scores.legend(fontsize=8)

    fig.tight_layout()
    if show:
        plt.show()
    return fig


def plot_zapline_summary(
    result: "ZaplinePlusResult",
    fmax: Optional[float] = None,
    ax: Optional[plt.Axes] = None,
    show: bool = True,
) -> plt.Axes:
    """Compare the spectrum before and after cleaning all frequencies.

    Parameters
    ----------
    result : ZaplinePlusResult
        Output of :func:`~mne_zapline.zapline_plus`.
    fmax : float | None
        Maximum frequency to display. Defaults to the Nyquist frequency.
    ax : Axes | None
        Matplotlib axes. If None, creates new figure.
    show : bool
        Whether to call plt.show().

    Returns
    -------
    ax : Axes
        The matplotlib axes with the plot.
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(10, 4))

    if not result.frequency_results:
        return _empty_axes(ax, "No noise frequencies were cleaned")

    first = result.frequency_results[0]
    last = result.frequency_results[-1]
    freqs = first.freqs
    if fmax is None:
        fmax = float(freqs[-1])
    mask = freqs <= fmax

    ax.plot(freqs[mask], first.psd_raw_log[mask], color=_RAW_COLOR, alpha=0.7, label="Raw")
    ax.plot(freqs[mask], last.psd_clean_log[mask], color=_CLEAN_COLOR, label="Cleaned")
    for freq_result in result.frequency_results:
        ax.axvline(freq_result.frequency, color=_REMOVED_COLOR, linestyle="--", alpha=0.5)

    ax.set_xlabel("Frequency (Hz)")
    ax.set_ylabel("Power (10*log10)")
    ax.set_title(
        "Cleaned frequencies: " + ", ".join(f"{f:.2f}" for f in result.noisefreqs) + " Hz"
    )
    ax.set_xlim(0, fmax)
    ax.legend()

    if show:
        plt.tight_layout()
        plt.show()

    return ax
