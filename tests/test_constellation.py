import numpy as np
import pytest

from songprint.audio_utils import ArraySource, BandpassMonoStream
from songprint.constellation import (
    chunk_layout,
    chunk_peaks,
    constellation_from_samples,
    extract_constellation,
    find_peak_bins,
    magnitude_spectrum,
)

SR = 11025
CHUNK, STEP = 4096, 2048


def bump(center, size=CHUNK, height=100.0):
    i = np.arange(size)
    return np.maximum(0.0, height - (i - center) ** 2)


def test_chunk_layout():
    assert chunk_layout() == (CHUNK, STEP)
    assert chunk_layout(channels=2) == (2048, 1024)


def test_find_peak_bins_needs_strict_slopes():
    assert find_peak_bins(np.array([0, 1, 2, 1, 0])).tolist() == [2]
    assert find_peak_bins(np.array([0, 1, 2, 2, 1, 0])).tolist() == []
    assert find_peak_bins(np.array([0, 2, 1, 3, 0])).tolist() == []
    assert find_peak_bins(np.array([1, 2, 3])).tolist() == []


def test_single_bump_gives_one_point():
    points = chunk_peaks(bump(400), SR, chunk_index=3, step_size=STEP)

    assert len(points) == 1
    assert points[0].frequency == pytest.approx(400 * SR / CHUNK)
    assert points[0].magnitude == pytest.approx(100.0)
    assert points[0].time == pytest.approx(3 * STEP / SR)


def test_out_of_band_peaks_are_dropped():
    assert chunk_peaks(bump(2), SR, 0, STEP) == []
    assert chunk_peaks(bump(1900), SR, 0, STEP) == []


def test_silent_chunk_has_no_points():
    assert chunk_peaks(np.zeros(CHUNK), SR, 0, STEP) == []


def test_keeps_strongest_four_normalized_to_chunk_max():
    magnitudes = bump(100, height=20) + bump(200, height=40) + bump(300, height=60)
    magnitudes += bump(400, height=80) + bump(500, height=100)
    # out of band but still the chunk maximum
    magnitudes += bump(1950, height=200)

    points = chunk_peaks(magnitudes, SR, 0, STEP)

    assert [round(p.frequency / (SR / CHUNK)) for p in points] == [500, 400, 300, 200]
    assert [p.magnitude for p in points] == pytest.approx([50.0, 40.0, 30.0, 20.0])


def test_sine_peak_frequency():
    t = np.arange(CHUNK) / SR
    chunk = 10000 * np.sin(2 * np.pi * 1000 * t)

    points = chunk_peaks(magnitude_spectrum(chunk, np.hamming(CHUNK)), SR, 0, STEP)

    assert abs(points[0].frequency - 1000) < SR / CHUNK
    assert points[0].magnitude == pytest.approx(100.0)


def test_partial_trailing_chunk_is_dropped():
    samples = np.zeros(CHUNK + 3 * STEP + 100)
    assert len(constellation_from_samples(samples, SR)) == 4
    assert constellation_from_samples(np.zeros(CHUNK - 1), SR) == []


def test_streamed_and_array_chunking_agree():
    samples = np.random.default_rng(7).normal(0, 1000, CHUNK + 5 * STEP)

    from_array = constellation_from_samples(samples, SR)
    from_stream = constellation_from_samples(iter(samples.tolist()), SR)

    assert len(from_array) == 6
    assert from_stream == from_array


def test_threaded_extraction_matches_inline():
    samples = np.random.default_rng(11).normal(0, 1000, CHUNK + 9 * STEP)

    assert constellation_from_samples(samples, SR, workers=3) == constellation_from_samples(
        samples, SR
    )


def test_extract_constellation_accepts_source_or_stream(song_a_source):
    clip = song_a_source.slice(0.0, 2.0)

    from_source = extract_constellation(clip)
    from_stream = extract_constellation(BandpassMonoStream(clip, 11025))

    assert from_source == from_stream
    assert any(from_source)
    for chunk_index, points in enumerate(from_source):
        assert len(points) <= 4
        for point in points:
            assert 20 <= point.frequency <= 5000
            assert 0 <= point.magnitude <= 100
            assert point.time == pytest.approx(chunk_index * STEP / SR)


def test_extract_constellation_rejects_stream_at_other_rate():
    stream = BandpassMonoStream(ArraySource(np.zeros(44100), 44100), 22050)
    with pytest.raises(ValueError):
        extract_constellation(stream)
