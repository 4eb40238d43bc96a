import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from songprint.audio_utils import BandpassMonoStream
from songprint.config import AudioConfig, ConstellationConfig as Config
from songprint.logging_config import setup_logger

logger = setup_logger(__name__, level=logging.INFO)


@dataclass(frozen=True)
class ConstellationPoint:
    """One spectral peak of one analysis chunk."""

    time: float  # seconds, start of the chunk's step
    frequency: float  # Hz
    magnitude: float  # 0-100, relative to the chunk maximum


def chunk_layout(channels=1):
    """
    Analysis window and hop for a stream with `channels` channels.

    Returns:
        (chunk_size, step_size) in samples
    """
    chunk_size = Config.CHUNK_BYTES // (Config.BYTES_PER_SAMPLE * channels)
    overlap = chunk_size * Config.OVERLAP_PERCENT // 100
    return chunk_size, chunk_size - overlap


def magnitude_spectrum(chunk, window):
    """Hamming-windowed complex FFT magnitude of one chunk"""
    return np.abs(np.fft.fft(chunk * window))


def find_peak_bins(magnitudes, window_bins=Config.PEAK_WINDOW_BINS):
    """
    Find bins that are a strict local maximum over `window_bins` bins.

    A bin qualifies when the magnitudes strictly rise into it and strictly
    fall after it across the whole window; plateaus never qualify.

    Args:
        magnitudes: 1-D magnitude spectrum
        window_bins: Odd window width (5 -> b0<b1<b2>b3>b4)

    Returns:
        Array of centre bin indices, ascending
    """
    half = window_bins // 2
    span = len(magnitudes) - 2 * half
    if span <= 0:
        return np.empty(0, dtype=np.intp)

    m = magnitudes
    mask = np.ones(span, dtype=bool)
    for k in range(half):
        mask &= m[k : k + span] < m[k + 1 : k + 1 + span]
        mask &= m[half + k : half + k + span] > m[half + k + 1 : half + k + 1 + span]

    return np.flatnonzero(mask) + half


def chunk_peaks(magnitudes, sample_rate, chunk_index, step_size):
    """
    Turn one chunk's magnitude spectrum into constellation points.

    Peaks are restricted to the band-pass range, normalized to the chunk's
    strongest bin (0-100) and only the strongest few are kept.

    Args:
        magnitudes: Magnitude spectrum of the chunk (length = chunk size)
        sample_rate: Sample rate of the analysed signal
        chunk_index: Position of the chunk in the stream
        step_size: Hop between consecutive chunks, in samples

    Returns:
        List of ConstellationPoint, strongest first
    """
    chunk_size = len(magnitudes)
    if chunk_size == 0:
        return []

    frequency_resolution = sample_rate / chunk_size
    max_magnitude = float(np.max(magnitudes))

    bins = find_peak_bins(magnitudes)
    freqs = bins * frequency_resolution
    in_band = (freqs >= Config.MIN_FREQ_HZ) & (freqs <= Config.MAX_FREQ_HZ)
    bins, freqs = bins[in_band], freqs[in_band]

    peak_mags = magnitudes[bins]
    strongest = np.argsort(-peak_mags, kind="stable")[: Config.PEAKS_PER_CHUNK]

    time = chunk_index * step_size / sample_rate
    points = []
    for idx in strongest:
        if max_magnitude > 0:
            normalized = peak_mags[idx] / max_magnitude * Config.MAGNITUDE_SCALE
        else:
            normalized = 0.0
        points.append(
            ConstellationPoint(
                time=time, frequency=float(freqs[idx]), magnitude=float(normalized)
            )
        )
    return points


def iter_chunks(samples, chunk_size, step_size):
    """
    Slide a `chunk_size` window over `samples`, advancing `step_size`.

    Yields full chunks only; a trailing partial chunk is dropped.
    """
    if isinstance(samples, np.ndarray):
        for start in range(0, len(samples) - chunk_size + 1, step_size):
            yield samples[start : start + chunk_size].astype(np.float64)
        return

    keep = chunk_size - step_size
    buffer = np.empty(chunk_size, dtype=np.float64)
    filled = 0
    for sample in samples:
        buffer[filled] = sample
        filled += 1
        if filled == chunk_size:
            yield buffer.copy()
            # Retain the overlapping half at the front
            buffer[:keep] = buffer[step_size:]
            filled = keep


def constellation_from_samples(samples, sample_rate, workers=None):
    """
    Build the chunked constellation map of a conditioned mono signal.

    Args:
        samples: Iterable (or numpy array) of mono samples
        sample_rate: Rate of `samples` in Hz
        workers: Threads used for the per-chunk FFT (None/1 = inline)

    Returns:
        constellation: list indexed by chunk number, each a list of points
    """
    chunk_size, step_size = chunk_layout(channels=1)
    window = np.hamming(chunk_size)

    logger.info(
        f"Processing in chunks of {chunk_size} samples "
        f"({chunk_size / sample_rate:.3f} s) with {Config.OVERLAP_PERCENT}% overlap "
        f"({step_size / sample_rate:.3f} s steps)"
    )

    def analyze(indexed_chunk):
        chunk_index, chunk = indexed_chunk
        magnitudes = magnitude_spectrum(chunk, window)
        return chunk_peaks(magnitudes, sample_rate, chunk_index, step_size)

    chunks = enumerate(iter_chunks(samples, chunk_size, step_size))
    if workers and workers > 1:
        # map() keeps chunk order regardless of completion order
        with ThreadPoolExecutor(max_workers=workers) as pool:
            constellation = list(pool.map(analyze, chunks))
    else:
        constellation = [analyze(item) for item in chunks]

    logger.info(
        f"Generated {sum(len(points) for points in constellation)} constellation "
        f"points from {len(constellation)} chunks"
    )
    return constellation


def extract_constellation(
    audio_source, target_sample_rate=AudioConfig.TARGET_SAMPLE_RATE, workers=None
):
    """
    Condition an audio source and extract its constellation map.

    Args:
        audio_source: AudioSource, or a BandpassMonoStream already at
            `target_sample_rate`
        target_sample_rate: Analysis sample rate in Hz
        workers: Threads used for the per-chunk FFT

    Returns:
        constellation: list indexed by chunk number, each a list of points
    """
    if isinstance(audio_source, BandpassMonoStream):
        if audio_source.sample_rate != target_sample_rate:
            raise ValueError(
                f"Stream is at {audio_source.sample_rate} Hz, expected {target_sample_rate} Hz"
            )
        stream = audio_source
    else:
        stream = BandpassMonoStream(audio_source, target_sample_rate)

    return constellation_from_samples(stream, stream.sample_rate, workers=workers)
