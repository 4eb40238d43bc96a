import logging
import math
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from songprint.audio_utils import ArraySource, load_audio
from songprint.config import MatchConfig
from songprint.fingerprint import fingerprint_audio
from songprint.logging_config import setup_logger

# setting up logger
logger = setup_logger(__name__, logging.INFO)

# Absorbs float noise so 2.1 - 0.1 lands in the 2.0 bucket
_BUCKET_EPSILON = 1e-9


@dataclass(frozen=True)
class MatchResult:
    """A catalog song that the query aligned with."""

    song_id: object
    confidence: float  # aligned hashes / query hashes; above 1 when stored hashes repeat
    matched_count: int
    time_offset: float  # seconds into the song where the query starts


def offset_bucket(offset, bin_size=MatchConfig.BIN_SIZE):
    """
    Histogram key of a time offset: number of whole bins, truncated
    toward zero.
    """
    scaled = offset / bin_size
    return int(scaled + math.copysign(_BUCKET_EPSILON, scaled))


def bucket_seconds(key, bin_size=MatchConfig.BIN_SIZE):
    return round(key * bin_size, 6)


def build_query_lookup(query_fingerprints):
    """Map hash -> query fingerprints carrying that hash"""
    lookup = defaultdict(list)
    for fp in query_fingerprints:
        lookup[fp.hash].append(fp)
    return lookup


def score_song(query_lookup, song_fingerprints):
    """
    Vote on the time offset between a song and the query.

    Every stored fingerprint whose hash appears in the query votes once per
    matching query fingerprint for the bucket of
    `stored.time_offset - query.time_offset`. The first bucket to reach a
    new maximum keeps the lead on ties.

    Args:
        query_lookup: hash -> list of query fingerprints
        song_fingerprints: Stored fingerprints of one song

    Returns:
        histogram: bucket key -> votes
        best_key: bucket key with the most votes (0 if none)
        best_count: votes of that bucket
    """
    histogram = defaultdict(int)
    best_key, best_count = 0, 0

    for stored in song_fingerprints:
        matching = query_lookup.get(stored.hash)
        if not matching:
            continue
        for query_fp in matching:
            key = offset_bucket(stored.time_offset - query_fp.time_offset)
            histogram[key] += 1
            if histogram[key] > best_count:
                best_count = histogram[key]
                best_key = key

    return histogram, best_key, best_count


def match_fingerprints(query_fingerprints, candidates, workers=None):
    """
    Rank candidate songs by time-offset histogram voting.

    Args:
        query_fingerprints: Fingerprints of the query clip
        candidates: song_id -> stored fingerprints sharing a hash with the query
        workers: Threads used to score songs (None/1 = inline)

    Returns:
        results: List of MatchResult, highest confidence first
    """
    if not query_fingerprints:
        return []

    query_lookup = build_query_lookup(query_fingerprints)
    total = len(query_fingerprints)

    def score(item):
        song_id, song_fingerprints = item
        _, best_key, best_count = score_song(query_lookup, song_fingerprints)
        confidence = best_count / total

        logger.debug(
            f"  Song #{song_id}: votes={best_count}, confidence={confidence:.3f}, "
            f"offset={bucket_seconds(best_key):.1f}s"
        )

        if best_count >= MatchConfig.MIN_MATCHES and confidence > MatchConfig.MIN_CONFIDENCE:
            return MatchResult(
                song_id=song_id,
                confidence=confidence,
                matched_count=best_count,
                time_offset=bucket_seconds(best_key),
            )
        return None

    items = list(candidates.items())
    if workers and workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            scored = list(pool.map(score, items))
    else:
        scored = [score(item) for item in items]

    results = [result for result in scored if result is not None]
    results.sort(key=lambda r: r.confidence, reverse=True)
    return results


def match_query(query_fingerprints, database, return_top_n=5, workers=None, save_plot=None):
    """
    Match a query against the database.

    Args:
        query_fingerprints: Fingerprints of the query clip
        database: Catalog store (FingerprintDatabase or SQLiteFingerprintDatabase)
        return_top_n: Number of top matches to return
        workers: Threads used to score songs
        save_plot: Optional path to save the best match's offset histogram

    Returns:
        matches: List of {"match": MatchResult, "song_info": SongInfo}, best first
    """
    start_time = time.time()

    # Step 1: Query database for all matching hashes
    logger.info("[1/3] Querying database...")
    logger.info(f"  Query fingerprints: {len(query_fingerprints)}")

    hashes = list(dict.fromkeys(fp.hash for fp in query_fingerprints))
    candidates = database.lookup_by_hash(hashes)

    logger.info(f"  Found potential matches in {len(candidates)} song(s)")

    # Step 2: Score each candidate song
    logger.info("[2/3] Scoring candidates...")
    results = match_fingerprints(query_fingerprints, candidates, workers=workers)
    results = results[:return_top_n]

    # Step 3: Attach song metadata
    song_infos = database.get_song_metadata([r.song_id for r in results])
    matches = [
        {"match": result, "song_info": song_infos.get(result.song_id)}
        for result in results
    ]

    query_time = time.time() - start_time
    logger.info("[3/3] Results:")
    logger.info(f"  Matches found: {len(matches)}")
    logger.info(f"  Query time: {query_time * 1000:.1f} ms")

    if matches:
        best, info = matches[0]["match"], matches[0]["song_info"]
        title = info.title if info else "?"
        artist = info.artist if info else "?"
        logger.info(
            f"✓ BEST MATCH: {title} by {artist} with confidence "
            f"{best.confidence:.2f} at time offset {best.time_offset:.2f}s"
        )

        if save_plot:
            import matplotlib.pyplot as plt

            from songprint.visualize import plot_offset_histogram

            histogram, _, _ = score_song(
                build_query_lookup(query_fingerprints), candidates[best.song_id]
            )
            fig = plot_offset_histogram(
                histogram, best, title=f"{title} by {artist}", save_path=save_plot
            )
            plt.close(fig)
    else:
        logger.info("✗ NO MATCH FOUND")

    return matches


def identify_song(
    audio,
    database,
    start=None,
    duration=None,
    return_top_n=5,
    workers=None,
    save_plot=None,
):
    """
    Complete identification pipeline:
    Load audio → (slice) → Fingerprint → Match

    Args:
        audio: Path to a WAV file, or an AudioSource
        database: Catalog store
        start: Seconds to skip before the query clip (ArraySource only)
        duration: Seconds of audio to keep (ArraySource only)
        return_top_n: Number of matches to return
        workers: Threads used for spectral analysis and scoring
        save_plot: Optional path to save the best match's offset histogram

    Returns:
        matches: List of {"match": MatchResult, "song_info": SongInfo}
    """
    if isinstance(audio, (str, Path)):
        audio = load_audio(audio)
    if start is not None or duration is not None:
        if not isinstance(audio, ArraySource):
            raise ValueError(f"Cannot slice {type(audio).__name__}, pass an ArraySource")
        audio = audio.slice(start or 0.0, duration)

    logger.info("[Step 1/2] Fingerprinting query audio...")
    query_fingerprints, _ = fingerprint_audio(audio, workers=workers)

    logger.info("[Step 2/2] Searching database...")
    return match_query(
        query_fingerprints, database, return_top_n, workers=workers, save_plot=save_plot
    )
