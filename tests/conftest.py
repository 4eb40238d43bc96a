import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest
from scipy.io import wavfile

from songprint.audio_utils import ArraySource
from songprint.constellation import chunk_layout
from songprint.fingerprint import fingerprint_audio

SOURCE_RATE = 44100

# Tone sequences: each 0.5 s segment plays f and its octave 2f
SONG_A_TONES = [220, 330, 247, 370, 262, 392, 277, 415, 294, 440,
                311, 466, 208, 349, 233, 494, 196, 523, 185, 554]
SONG_B_TONES = [610, 820, 650, 870, 690, 910, 730, 950, 770, 990,
                635, 845, 675, 895, 715, 935, 755, 975, 795, 1015]


def tone_sequence(tones, segment_seconds=0.5, sample_rate=SOURCE_RATE, amplitude=0.3):
    """Concatenate (f, 2f) tone pairs, one pair per segment"""
    n = int(segment_seconds * sample_rate)
    t = np.arange(n) / sample_rate
    segments = [
        amplitude * np.sin(2 * np.pi * f * t) + amplitude * np.sin(2 * np.pi * 2 * f * t)
        for f in tones
    ]
    return np.concatenate(segments)


def aligned_start(seconds, sample_rate=SOURCE_RATE):
    """Closest query start to `seconds` that falls on an analysis step"""
    _, step_size = chunk_layout()
    ratio = sample_rate // 11025
    steps = round(seconds * 11025 / step_size)
    return steps * step_size * ratio / sample_rate


@pytest.fixture(scope="session")
def song_a_source():
    return ArraySource(tone_sequence(SONG_A_TONES), SOURCE_RATE)


@pytest.fixture(scope="session")
def song_b_source():
    return ArraySource(tone_sequence(SONG_B_TONES), SOURCE_RATE)


@pytest.fixture(scope="session")
def song_a_fingerprints(song_a_source):
    fingerprints, _ = fingerprint_audio(song_a_source)
    return fingerprints


@pytest.fixture(scope="session")
def song_b_fingerprints(song_b_source):
    fingerprints, _ = fingerprint_audio(song_b_source)
    return fingerprints


@pytest.fixture
def song_a_wav(tmp_path):
    path = tmp_path / "song_a.wav"
    samples = (tone_sequence(SONG_A_TONES) * 32767).astype(np.int16)
    wavfile.write(path, SOURCE_RATE, samples)
    return path
