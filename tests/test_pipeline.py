import numpy as np
import pytest

from songprint.audio_utils import ArraySource, BandpassMonoStream
from songprint.database import FingerprintDatabase, SQLiteFingerprintDatabase
from songprint.fingerprint import fingerprint_audio
from songprint.matcher import identify_song, match_fingerprints, match_query

from conftest import SOURCE_RATE, aligned_start


@pytest.fixture(params=["memory", "sqlite"])
def catalog(request, song_a_source, song_a_fingerprints, song_b_source, song_b_fingerprints):
    if request.param == "memory":
        db = FingerprintDatabase()
    else:
        db = SQLiteFingerprintDatabase(":memory:")

    db.insert_song_fingerprints(("Song A", "Tones"), song_a_source.total_duration, song_a_fingerprints)
    db.insert_song_fingerprints(("Song B", "Tones"), song_b_source.total_duration, song_b_fingerprints)
    yield db

    if request.param == "sqlite":
        db.close()


def test_clip_is_identified_with_its_offset(catalog, song_a_source):
    start = aligned_start(2.0)
    clip = song_a_source.slice(start=start, duration=3.0)

    matches = identify_song(clip, catalog)

    assert matches
    best, info = matches[0]["match"], matches[0]["song_info"]
    assert info.title == "Song A"
    assert best.matched_count >= 3
    assert best.confidence > 0.05
    assert abs(best.time_offset - 2.0) <= 0.1


def test_identify_slices_the_source(catalog, song_b_source):
    matches = identify_song(song_b_source, catalog, start=aligned_start(5.0), duration=3.0)

    assert matches[0]["song_info"].title == "Song B"
    assert abs(matches[0]["match"].time_offset - 5.0) <= 0.2


def test_whole_song_matches_itself_at_zero(song_a_fingerprints):
    results = match_fingerprints(song_a_fingerprints, {1: song_a_fingerprints})

    assert results[0].time_offset == 0.0
    assert results[0].confidence >= 0.5


@pytest.mark.parametrize("seed", range(5))
def test_noise_is_not_matched(catalog, seed):
    noise = np.random.default_rng(seed).normal(0, 0.2, 3 * SOURCE_RATE)
    query_fps, _ = fingerprint_audio(ArraySource(noise, SOURCE_RATE))

    matches = match_query(query_fps, catalog)

    assert matches == []


def test_return_top_n_limits_results(catalog, song_a_source):
    clip = song_a_source.slice(start=aligned_start(2.0), duration=3.0)
    assert len(identify_song(clip, catalog, return_top_n=1)) == 1


def test_threaded_pipeline_matches_inline(catalog, song_a_source):
    clip = song_a_source.slice(start=aligned_start(4.0), duration=3.0)

    inline = identify_song(clip, catalog)
    threaded = identify_song(clip, catalog, workers=4)

    assert [m["match"] for m in threaded] == [m["match"] for m in inline]


@pytest.mark.parametrize("start", [2.0, 3.0, 4.0])
def test_unaligned_clip_offset_within_one_bucket(catalog, song_a_source, start):
    clip = song_a_source.slice(start=start, duration=3.0)

    best = identify_song(clip, catalog)[0]

    assert best["song_info"].title == "Song A"
    assert best["match"].time_offset == pytest.approx(start, abs=0.1 + 1e-9)


def test_identify_saves_offset_histogram(catalog, song_a_source, tmp_path):
    path = tmp_path / "offsets.png"

    identify_song(song_a_source, catalog, start=2.0, duration=3.0, save_plot=path)

    assert path.exists()


def test_slicing_needs_an_array_source(catalog, song_a_source):
    stream = BandpassMonoStream(song_a_source, 11025)
    with pytest.raises(ValueError):
        identify_song(stream, catalog, start=2.0)
