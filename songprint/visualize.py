import logging

import matplotlib.pyplot as plt
import numpy as np

from songprint.config import ConstellationConfig, MatchConfig
from songprint.logging_config import setup_logger

logger = setup_logger(__name__, level=logging.INFO)


def plot_constellation_map(constellation, save_path=None, show=False):
    """
    Visualize the constellation map (peaks per chunk).
    This should look like a "star field".

    Args:
        constellation: list of chunk index -> ConstellationPoints
        save_path: Optional path to save figure
        show: Whether to open the figure window

    Returns:
        fig: matplotlib Figure
    """
    points = [point for chunk in constellation for point in chunk]

    fig, ax = plt.subplots(figsize=(14, 6))

    if points:
        times = np.array([p.time for p in points])
        freqs = np.array([p.frequency for p in points])
        mags = np.array([p.magnitude for p in points])
        sc = ax.scatter(
            times,
            freqs,
            c=mags,
            s=5 + mags / 2,
            cmap="viridis",
            vmin=0,
            vmax=ConstellationConfig.MAGNITUDE_SCALE,
            label=f"{len(points)} peaks",
        )
        plt.colorbar(sc, ax=ax, label="Normalized magnitude")
        ax.legend(loc="upper right")

    ax.set_ylim(0, ConstellationConfig.MAX_FREQ_HZ)
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Frequency (Hz)")
    ax.set_title(f'Constellation Map ("Star Field"), {len(constellation)} chunks')
    ax.grid(True, alpha=0.3)

    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        logger.info(f"✓ Visualization saved to: {save_path}")

    if show:
        plt.show()

    return fig


def plot_offset_histogram(histogram, match_result=None, title=None, save_path=None, show=False):
    """
    Visualize the offset histogram of one candidate song.
    A true match shows one clear spike.

    Args:
        histogram: bucket key -> votes (from matcher.score_song)
        match_result: Optional MatchResult to mark the winning offset
        title: Optional plot title (e.g. the song title)
        save_path: Optional path to save figure
        show: Whether to open the figure window

    Returns:
        fig: matplotlib Figure
    """
    fig, ax = plt.subplots(figsize=(10, 5))

    if histogram:
        keys = sorted(histogram)
        offsets = [key * MatchConfig.BIN_SIZE for key in keys]
        votes = [histogram[key] for key in keys]
        ax.bar(
            offsets,
            votes,
            width=MatchConfig.BIN_SIZE * 0.9,
            color="steelblue",
            alpha=0.7,
            edgecolor="black",
        )

    if match_result is not None:
        ax.axvline(
            match_result.time_offset,
            color="red",
            linestyle="--",
            linewidth=2,
            label=f"Peak at {match_result.time_offset:.1f}s "
            f"({match_result.matched_count} votes, {match_result.confidence:.2f})",
        )
        ax.legend()

    ax.set_xlabel("Time Offset (song time - query time) [s]")
    ax.set_ylabel("Number of Matches")
    ax.set_title(title or "Offset Histogram")
    ax.grid(True, alpha=0.3, axis="y")

    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        logger.info(f"✓ Visualization saved to: {save_path}")

    if show:
        plt.show()

    return fig
