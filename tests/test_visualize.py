import matplotlib.pyplot as plt

from songprint.constellation import extract_constellation
from songprint.fingerprint import Fingerprint
from songprint.matcher import build_query_lookup, match_fingerprints, score_song
from songprint.visualize import plot_constellation_map, plot_offset_histogram


def test_plot_constellation_map(song_a_source, tmp_path):
    constellation = extract_constellation(song_a_source.slice(0.0, 2.0))
    path = tmp_path / "constellation.png"

    fig = plot_constellation_map(constellation, save_path=path)

    assert path.exists()
    plt.close(fig)


def test_plot_empty_constellation():
    fig = plot_constellation_map([])
    assert fig.axes
    plt.close(fig)


def test_plot_offset_histogram(tmp_path):
    query = [Fingerprint(i, i * 0.1, 50.0, 440.0, 880.0, 0.2) for i in range(10)]
    song = [Fingerprint(f.hash, f.time_offset + 3.0, 50.0, 440.0, 880.0, 0.2) for f in query]
    histogram, _, _ = score_song(build_query_lookup(query), song)
    result = match_fingerprints(query, {1: song})[0]
    path = tmp_path / "offsets.png"

    fig = plot_offset_histogram(histogram, result, title="Song A", save_path=path)

    assert path.exists()
    plt.close(fig)
