import logging
import math
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from songprint.audio_utils import load_audio
from songprint.config import AudioConfig, HashConfig
from songprint.constellation import chunk_layout, extract_constellation
from songprint.logging_config import setup_logger

# setting up logger
logger = setup_logger(__name__, level=logging.INFO)

_MASK_64 = (1 << 64) - 1


@dataclass(frozen=True)
class Fingerprint:
    """Hash of an (anchor, target) peak pair plus the data to align it."""

    hash: int
    time_offset: float  # anchor time in the clip (s)
    confidence: float
    anchor_freq: float
    target_freq: float
    delta_t: float  # target time - anchor time (s)

    @classmethod
    def from_pair(cls, anchor, target):
        """Build the fingerprint of an anchor and a later target point."""
        delta_t = target.time - anchor.time
        return cls(
            hash=create_hash(anchor.frequency, target.frequency, delta_t),
            time_offset=round(anchor.time, HashConfig.TIME_DECIMALS),
            confidence=pair_confidence(anchor.magnitude, target.magnitude),
            anchor_freq=anchor.frequency,
            target_freq=target.frequency,
            delta_t=round(delta_t, HashConfig.TIME_DECIMALS),
        )

    def to_row(self):
        return (
            self.hash,
            self.time_offset,
            self.confidence,
            self.anchor_freq,
            self.target_freq,
            self.delta_t,
        )

    @classmethod
    def from_row(cls, row):
        hash_val, time_offset, confidence, anchor_freq, target_freq, delta_t = row
        return cls(
            hash=int(hash_val),
            time_offset=float(time_offset),
            confidence=float(confidence),
            anchor_freq=float(anchor_freq),
            target_freq=float(target_freq),
            delta_t=float(delta_t),
        )


def quantize_frequency(freq):
    """
    Adaptive frequency quantization.

    5 Hz bins below 300 Hz, 10 Hz bins up to 1 kHz, 20 Hz bins above.
    Non-positive frequencies map to 0.
    """
    if freq <= 0:
        return 0
    for upper, width in HashConfig.FREQ_BANDS:
        if freq < upper:
            return int(round(freq / width))
    return int(round(freq / HashConfig.HIGH_FREQ_BIN))


def create_hash(anchor_freq, target_freq, delta_t):
    """
    Create a hash from frequency pair and time delta.

    FNV-1a (64 bit) over the quantized anchor frequency, the quantized
    target frequency and the delta in hundredths of a second (truncated).
    Pairs that quantize identically collide on purpose: the hash is the
    catalog lookup key.

    Args:
        anchor_freq: Anchor frequency (Hz)
        target_freq: Target frequency (Hz)
        delta_t: Time difference (s)

    Returns:
        hash_value: signed 64-bit integer
    """
    components = (
        quantize_frequency(anchor_freq),
        quantize_frequency(target_freq),
        int(delta_t * 100),
    )

    hash_value = HashConfig.FNV_OFFSET
    for value in components:
        hash_value ^= value & _MASK_64
        hash_value = (hash_value * HashConfig.FNV_PRIME) & _MASK_64

    if hash_value >= 1 << 63:
        hash_value -= 1 << 64
    return hash_value


def pair_confidence(magnitude1, magnitude2):
    return math.sqrt(max(0.0, magnitude1 * magnitude2))


def is_harmonically_related(f1, f2):
    """
    Check if two frequencies form a common musical interval.

    Ratios from unison to octave are accepted with a small tolerance;
    frequencies closer than SAME_BAND_HZ are always related.
    """
    low, high = min(f1, f2), max(f1, f2)
    if low > 0:
        ratio = high / low
        for interval in HashConfig.HARMONIC_RATIOS:
            if abs(ratio - interval) < HashConfig.RATIO_TOLERANCE:
                return True

    return abs(f2 - f1) < HashConfig.SAME_BAND_HZ


def _chunk_access(constellation):
    """(getter, chunk indices) for a list- or dict-shaped constellation map"""
    if isinstance(constellation, Mapping):
        return constellation.get, sorted(constellation)

    num_chunks = len(constellation)

    def get(index):
        return constellation[index] if index < num_chunks else None

    return get, range(num_chunks)


def generate_fingerprints(constellation):
    """
    Generate fingerprints from a chunked constellation map.

    For each chunk the strongest points become anchors. Each anchor is
    paired with the strongest point of the chunks a fixed number of steps
    ahead, keeping only harmonically related, confident pairs, and at most
    MAX_PAIRS_PER_ANCHOR pairs in the order they are found.

    Args:
        constellation: list (or dict) of chunk index -> ConstellationPoints

    Returns:
        fingerprints: List of Fingerprint
    """
    get_chunk, chunk_indices = _chunk_access(constellation)
    fingerprints = []

    for chunk_index in chunk_indices:
        points = get_chunk(chunk_index)
        if not points:
            continue

        anchors = sorted(points, key=lambda p: p.magnitude, reverse=True)
        for anchor in anchors[: HashConfig.ANCHORS_PER_CHUNK]:
            pair_count = 0

            for offset in HashConfig.TARGET_CHUNK_OFFSETS:
                target_points = get_chunk(chunk_index + offset)
                if not target_points:
                    continue

                # ties go to the later point
                target = max(reversed(target_points), key=lambda p: p.magnitude)

                if not is_harmonically_related(anchor.frequency, target.frequency):
                    continue
                confidence = pair_confidence(anchor.magnitude, target.magnitude)
                if confidence < HashConfig.MIN_PAIR_CONFIDENCE:
                    continue

                fingerprints.append(Fingerprint.from_pair(anchor, target))
                pair_count += 1
                if pair_count >= HashConfig.MAX_PAIRS_PER_ANCHOR:
                    break

    logger.info(f"✓ Generated {len(fingerprints)} fingerprints")
    return fingerprints


def analyze_hash_distribution(fingerprints):
    """
    Analyze the hash distribution to check for good entropy.

    Args:
        fingerprints: List of Fingerprint

    Returns:
        stats: Dict with total/unique hash counts, collisions and time coverage
    """
    hash_counts = defaultdict(int)
    for fp in fingerprints:
        hash_counts[fp.hash] += 1

    total_hashes = len(fingerprints)
    unique_hashes = len(hash_counts)
    duplicates = {h: c for h, c in hash_counts.items() if c > 1}

    stats = {
        "total_hashes": total_hashes,
        "unique_hashes": unique_hashes,
        "uniqueness": unique_hashes / total_hashes if total_hashes else 0.0,
        "collisions": len(duplicates),
        "max_collision": max(duplicates.values()) if duplicates else 0,
        "min_time": min((fp.time_offset for fp in fingerprints), default=0.0),
        "max_time": max((fp.time_offset for fp in fingerprints), default=0.0),
    }

    logger.debug(f"Total hashes:    {stats['total_hashes']}")
    logger.debug(f"Unique hashes:   {stats['unique_hashes']}")
    logger.debug(f"Uniqueness:      {stats['uniqueness'] * 100:.1f}%")
    logger.debug(f"Collisions:      {stats['collisions']}")
    logger.debug(
        f"Time coverage:   {stats['min_time']:.2f}s - {stats['max_time']:.2f}s"
    )

    return stats


def fingerprint_audio(
    audio,
    target_sample_rate=AudioConfig.TARGET_SAMPLE_RATE,
    workers=None,
    save_plot=None,
):
    """
    Complete pipeline: condition audio → constellation → fingerprints

    Args:
        audio: Path to a WAV file, or an AudioSource
        target_sample_rate: Analysis sample rate
        workers: Threads used for the per-chunk FFT
        save_plot: Optional path to save the constellation plot

    Returns:
        fingerprints: List of Fingerprint
        metadata: Dict with additional info
    """
    if isinstance(audio, (str, Path)):
        audio = load_audio(audio)

    constellation = extract_constellation(audio, target_sample_rate, workers=workers)
    fingerprints = generate_fingerprints(constellation)
    hash_stats = analyze_hash_distribution(fingerprints)

    if save_plot:
        import matplotlib.pyplot as plt

        from songprint.visualize import plot_constellation_map

        fig = plot_constellation_map(constellation, save_path=save_plot)
        plt.close(fig)

    _, step_size = chunk_layout()
    duration = audio.total_duration
    if duration is None:
        duration = len(constellation) * step_size / target_sample_rate

    metadata = {
        "num_chunks": len(constellation),
        "num_peaks": sum(len(points) for points in constellation),
        "num_fingerprints": len(fingerprints),
        "unique_hashes": hash_stats["unique_hashes"],
        "duration": duration,
        "fingerprints_per_second": len(fingerprints) / duration if duration else 0.0,
    }

    logger.info("✓ Audio fingerprinting complete!")
    logger.info(f"  Duration: {metadata['duration']:.2f}s")
    logger.info(f"  Peaks: {metadata['num_peaks']}")
    logger.info(f"  Fingerprints: {metadata['num_fingerprints']}")

    return fingerprints, metadata
