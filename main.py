import argparse
import logging
import sqlite3
import sys
from pathlib import Path

from songprint.config import DatabaseConfig
from songprint.database import (
    FingerprintDatabase,
    SQLiteFingerprintDatabase,
    index_audio_file,
    index_directory,
)
from songprint.logging_config import set_level, setup_logger
from songprint.matcher import identify_song

logger = setup_logger(__name__)


def open_database(backend, db_path=None):
    """Open the pickle-backed in-memory catalog or the SQLite catalog."""
    if backend == "sqlite":
        return SQLiteFingerprintDatabase(db_path or DatabaseConfig.SQLITE_FILE)

    db_path = db_path or DatabaseConfig.DB_FILE
    return FingerprintDatabase.load(db_path, metadata_path=_metadata_path(db_path))


def save_database(db, backend, db_path=None):
    if backend == "sqlite":
        db.save()
        return
    db_path = db_path or DatabaseConfig.DB_FILE
    db.save(db_path, metadata_path=_metadata_path(db_path))


def _metadata_path(db_path):
    if str(db_path) == DatabaseConfig.DB_FILE:
        return DatabaseConfig.METADATA_FILE
    return str(Path(db_path).with_suffix(".json"))


def cmd_index(args, db):
    if args.dir:
        indexed = index_directory(args.dir, db, pattern=args.pattern, workers=args.workers)
        print(f"Indexed {len(indexed)} song(s) from {args.dir}")
    else:
        song_id = index_audio_file(
            args.file,
            db,
            {"title": args.title, "artist": args.artist},
            workers=args.workers,
        )
        print(f"Stored song with ID {song_id}")

    save_database(db, args.backend, args.db)
    return 0


def cmd_identify(args, db):
    matches = identify_song(
        args.file,
        db,
        start=args.start,
        duration=args.duration,
        return_top_n=args.top,
        workers=args.workers,
        save_plot=args.plot,
    )

    if not matches:
        print("No match found")
        return 1

    for rank, entry in enumerate(matches, 1):
        match, info = entry["match"], entry["song_info"]
        title = info.title if info else f"#{match.song_id}"
        artist = info.artist if info else "Unknown"
        print(
            f"{rank}. {title} by {artist}: confidence {match.confidence:.2f}, "
            f"{match.matched_count} aligned hashes, offset {match.time_offset:.1f}s"
        )
    return 0


def cmd_stats(args, db):
    stats = db.print_stats()
    print(
        f"{stats['num_songs']} song(s), {stats['total_hash_entries']} fingerprints, "
        f"{stats['unique_hashes']} unique hashes"
    )
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description="Audio fingerprint catalog and matcher")
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Database file (default depends on the backend)",
    )
    parser.add_argument(
        "--backend",
        choices=["memory", "sqlite"],
        default="memory",
        help="Catalog storage (default: memory, persisted with pickle/json)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Threads for spectral analysis and scoring",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    index = sub.add_parser("index", help="Fingerprint WAV files into the catalog")
    index.add_argument("file", nargs="?", help="WAV file to index")
    index.add_argument("--dir", type=str, help="Directory containing audio files to index")
    index.add_argument("--pattern", type=str, default="*.wav", help="File pattern (default: *.wav)")
    index.add_argument("--title", type=str, help="Song title (default: file name)")
    index.add_argument("--artist", type=str, default="Unknown", help="Song artist")
    index.set_defaults(handler=cmd_index)

    identify = sub.add_parser("identify", help="Identify a WAV clip")
    identify.add_argument("file", help="Query WAV file")
    identify.add_argument("--start", type=float, default=None, help="Seconds to skip")
    identify.add_argument("--duration", type=float, default=None, help="Seconds to use")
    identify.add_argument("--top", type=int, default=5, help="Number of matches to show")
    identify.add_argument(
        "--plot", type=str, default=None, help="Save the offset histogram of the best match"
    )
    identify.set_defaults(handler=cmd_identify)

    stats = sub.add_parser("stats", help="Show catalog statistics")
    stats.set_defaults(handler=cmd_stats)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "index" and not (args.file or args.dir):
        parser.error("index needs a FILE or --dir")

    if args.verbose:
        set_level(logging.DEBUG)

    try:
        db = open_database(args.backend, args.db)
        try:
            return args.handler(args, db)
        finally:
            if args.backend == "sqlite":
                db.close()
    except (OSError, ValueError, sqlite3.Error) as e:
        logger.error(f"✗ {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
