import json
import logging
import pickle
import sqlite3
import time
from collections import defaultdict
from dataclasses import asdict, dataclass
from pathlib import Path

from songprint.config import DatabaseConfig
from songprint.fingerprint import Fingerprint, fingerprint_audio
from songprint.logging_config import setup_logger

# setting up logger
logger = setup_logger(__name__, level=logging.INFO)


@dataclass(frozen=True)
class SongInfo:
    """Catalog metadata of one song; (title, artist) identifies it."""

    song_id: int
    title: str
    artist: str
    duration: float
    num_fingerprints: int
    filepath: str = None


def _batches(items, size):
    items = list(items)
    for start in range(0, len(items), size):
        yield items[start : start + size]


class CatalogStore:
    """
    Shared behaviour of the fingerprint catalogs.

    Subclasses implement song_exists, insert_song_fingerprints,
    lookup_by_hash, get_song_metadata, get_all_songs and get_stats.
    """

    def get_song_info(self, song_id):
        """Get metadata for a song by ID"""
        return self.get_song_metadata([song_id]).get(song_id)

    def print_stats(self):
        """Log database statistics"""
        stats = self.get_stats()

        logger.info(f"{'=' * 60}")
        logger.info("DATABASE STATISTICS")
        logger.info(f"{'=' * 60}")
        logger.info(f"Songs in database:     {stats['num_songs']}")
        logger.info(f"Unique hashes:         {stats['unique_hashes']:,}")
        logger.info(f"Total hash entries:    {stats['total_hash_entries']:,}")
        logger.info(f"Avg hashes per song:   {stats['avg_hashes_per_song']:.1f}")
        logger.info(f"Avg collision rate:    {stats['avg_collisions']:.2f} songs/hash")

        songs = self.get_all_songs()
        if songs:
            logger.info(f"{'ID':<5} {'Title':<30} {'Artist':<20} {'Hashes':<10} {'Duration':<10}")
            for info in songs:
                title = info.title[:28] + ".." if len(info.title) > 30 else info.title
                duration = f"{info.duration:.1f}s" if info.duration else "N/A"
                logger.info(
                    f"{info.song_id:<5} {title:<30} {info.artist[:20]:<20} "
                    f"{info.num_fingerprints:<10} {duration:<10}"
                )

        return stats


class FingerprintDatabase(CatalogStore):
    """
    In-memory hash database for audio fingerprinting.

    Structure:
        hash_table: {hash: [(song_id, position, Fingerprint), ...]}
        song_metadata: {song_id: SongInfo}
    """

    def __init__(self):
        """Initialize empty database"""
        self.hash_table = defaultdict(list)
        self.song_metadata = {}
        self.song_keys = {}
        self.next_song_id = 1
        self.next_position = 0

    def song_exists(self, song_key):
        """Return the ID of the song with this (title, artist), or None"""
        return self.song_keys.get(tuple(song_key))

    def insert_song_fingerprints(self, song_key, duration, fingerprints, filepath=None):
        """
        Add a song to the database.

        Args:
            song_key: (title, artist)
            duration: Song length in seconds
            fingerprints: List of Fingerprint
            filepath: Optional source file path

        Returns:
            song_id: ID assigned to this song, or the existing ID when the
                song is already indexed (nothing is stored then)
        """
        title, artist = song_key
        existing = self.song_exists(song_key)
        if existing is not None:
            logger.warning(f"Song already exists: {title} by {artist} (#{existing})")
            return existing

        song_id = self.next_song_id
        self.next_song_id += 1

        for fp in fingerprints:
            self.hash_table[fp.hash].append((song_id, self.next_position, fp))
            self.next_position += 1

        self.song_metadata[song_id] = SongInfo(
            song_id=song_id,
            title=title,
            artist=artist,
            duration=float(duration or 0.0),
            num_fingerprints=len(fingerprints),
            filepath=str(filepath) if filepath else None,
        )
        self.song_keys[(title, artist)] = song_id

        logger.info(f"✓ Added song #{song_id}: {title} by {artist}")
        logger.info(f"  Fingerprints: {len(fingerprints)}")

        return song_id

    def lookup_by_hash(self, hashes):
        """
        Look up multiple hashes (from a query sample).

        Args:
            hashes: Iterable of hash values

        Returns:
            matches: Dict mapping song_id to its stored fingerprints having
                one of the hashes, in insertion order
        """
        found = defaultdict(list)
        for hash_val in dict.fromkeys(hashes):
            for song_id, position, fp in self.hash_table.get(hash_val, ()):
                found[song_id].append((position, fp))

        return {
            song_id: [fp for _, fp in sorted(entries, key=lambda e: e[0])]
            for song_id, entries in found.items()
        }

    def get_song_metadata(self, song_ids):
        return {
            song_id: self.song_metadata[song_id]
            for song_id in song_ids
            if song_id in self.song_metadata
        }

    def get_all_songs(self):
        """Get list of all songs in database"""
        return [self.song_metadata[song_id] for song_id in sorted(self.song_metadata)]

    def get_stats(self):
        """Get database statistics"""
        total_hashes = sum(len(v) for v in self.hash_table.values())
        unique_hashes = len(self.hash_table)

        return {
            "num_songs": len(self.song_metadata),
            "unique_hashes": unique_hashes,
            "total_hash_entries": total_hashes,
            "avg_hashes_per_song": total_hashes / max(1, len(self.song_metadata)),
            "avg_collisions": total_hashes / max(1, unique_hashes),
        }

    def save(self, db_path=None, metadata_path=None):
        """
        Save database to disk.

        Args:
            db_path: Path for database file (pickle)
            metadata_path: Path for metadata file (json)
        """
        db_path = Path(db_path or DatabaseConfig.DB_FILE)
        metadata_path = Path(metadata_path or DatabaseConfig.METADATA_FILE)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        metadata_path.parent.mkdir(parents=True, exist_ok=True)

        with open(db_path, "wb") as f:
            data = {
                "hash_table": {
                    hash_val: [(song_id, pos, fp.to_row()) for song_id, pos, fp in entries]
                    for hash_val, entries in self.hash_table.items()
                },
                "next_song_id": self.next_song_id,
                "next_position": self.next_position,
            }
            pickle.dump(data, f)

        # Metadata as JSON for human readability
        with open(metadata_path, "w") as f:
            json.dump(
                {song_id: asdict(info) for song_id, info in self.song_metadata.items()},
                f,
                indent=2,
            )

        db_size_mb = db_path.stat().st_size / (1024 * 1024)
        logger.info("✓ Database saved:")
        logger.info(f"  Hash table: {db_path} ({db_size_mb:.2f} MB)")
        logger.info(f"  Metadata: {metadata_path}")

    @classmethod
    def load(cls, db_path=None, metadata_path=None):
        """
        Load database from disk.

        Missing files leave the corresponding part empty.

        Returns:
            FingerprintDatabase instance
        """
        db_path = Path(db_path or DatabaseConfig.DB_FILE)
        metadata_path = Path(metadata_path or DatabaseConfig.METADATA_FILE)

        db = cls()

        if db_path.exists():
            with open(db_path, "rb") as f:
                data = pickle.load(f)
            for hash_val, entries in data["hash_table"].items():
                db.hash_table[hash_val] = [
                    (song_id, pos, Fingerprint.from_row(row)) for song_id, pos, row in entries
                ]
            db.next_song_id = data["next_song_id"]
            db.next_position = data["next_position"]
            logger.info(f"✓ Loaded hash table from {db_path}")
        else:
            logger.warning(f"⚠ No database file found at {db_path}")

        if metadata_path.exists():
            with open(metadata_path, "r") as f:
                # JSON keys are strings, convert back to int
                metadata = json.load(f)
            for key, value in metadata.items():
                info = SongInfo(**value)
                db.song_metadata[int(key)] = info
                db.song_keys[(info.title, info.artist)] = info.song_id
            logger.info(f"✓ Loaded metadata from {metadata_path}")
        else:
            logger.warning(f"⚠ No metadata file found at {metadata_path}")

        return db


class SQLiteFingerprintDatabase(CatalogStore):
    """
    SQLite-backed catalog.

    Fingerprints live in one table indexed by hash; inserts and lookups are
    batched to bound the size of each statement. Errors from sqlite3 are
    not caught here.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS songs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            artist TEXT NOT NULL,
            duration REAL,
            filepath TEXT,
            num_fingerprints INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (title, artist)
        );
        CREATE TABLE IF NOT EXISTS fingerprints (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            song_id INTEGER NOT NULL REFERENCES songs (id),
            hash INTEGER NOT NULL,
            time_offset REAL NOT NULL,
            confidence REAL NOT NULL,
            anchor_frequency REAL NOT NULL,
            target_frequency REAL NOT NULL,
            delta_time REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_fingerprints_hash ON fingerprints (hash);
    """

    def __init__(self, db_path=None):
        self.db_path = str(db_path or DatabaseConfig.SQLITE_FILE)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(self.db_path)
        self.conn.executescript(self.SCHEMA)

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def save(self):
        self.conn.commit()

    def song_exists(self, song_key):
        title, artist = song_key
        row = self.conn.execute(
            "SELECT id FROM songs WHERE title = ? AND artist = ?", (title, artist)
        ).fetchone()
        return row[0] if row else None

    def insert_song_fingerprints(self, song_key, duration, fingerprints, filepath=None):
        """
        Store a song and its fingerprints in one transaction.

        Returns:
            song_id: New ID, or the existing ID if (title, artist) is
                already indexed
        """
        title, artist = song_key
        existing = self.song_exists(song_key)
        if existing is not None:
            logger.warning(f"Song already exists: {title} by {artist} (#{existing})")
            return existing

        with self.conn:
            cursor = self.conn.execute(
                "INSERT INTO songs (title, artist, duration, filepath, num_fingerprints) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    title,
                    artist,
                    float(duration or 0.0),
                    str(filepath) if filepath else None,
                    len(fingerprints),
                ),
            )
            song_id = cursor.lastrowid

            for batch in _batches(fingerprints, DatabaseConfig.INSERT_BATCH_SIZE):
                self.conn.executemany(
                    "INSERT INTO fingerprints (song_id, hash, time_offset, confidence, "
                    "anchor_frequency, target_frequency, delta_time) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [(song_id,) + fp.to_row() for fp in batch],
                )

        logger.info(f"✓ Inserted new song: {title} by {artist} ID: {song_id}")
        return song_id

    def lookup_by_hash(self, hashes):
        found = defaultdict(list)

        for batch in _batches(dict.fromkeys(hashes), DatabaseConfig.LOOKUP_BATCH_SIZE):
            placeholders = ", ".join("?" for _ in batch)
            rows = self.conn.execute(
                "SELECT id, song_id, hash, time_offset, confidence, anchor_frequency, "
                "target_frequency, delta_time FROM fingerprints "
                f"WHERE hash IN ({placeholders}) ORDER BY song_id, id",
                batch,
            ).fetchall()
            for row in rows:
                found[row[1]].append((row[0], Fingerprint.from_row(row[2:])))

        return {
            song_id: [fp for _, fp in sorted(entries, key=lambda e: e[0])]
            for song_id, entries in found.items()
        }

    def get_song_metadata(self, song_ids):
        result = {}
        for batch in _batches(dict.fromkeys(song_ids), DatabaseConfig.LOOKUP_BATCH_SIZE):
            placeholders = ", ".join("?" for _ in batch)
            rows = self.conn.execute(
                "SELECT id, title, artist, duration, num_fingerprints, filepath "
                f"FROM songs WHERE id IN ({placeholders})",
                batch,
            ).fetchall()
            for row in rows:
                result[row[0]] = SongInfo(*row)
        return result

    def get_all_songs(self):
        rows = self.conn.execute(
            "SELECT id, title, artist, duration, num_fingerprints, filepath "
            "FROM songs ORDER BY id"
        ).fetchall()
        return [SongInfo(*row) for row in rows]

    def get_stats(self):
        num_songs = self.conn.execute("SELECT COUNT(*) FROM songs").fetchone()[0]
        total_hashes, unique_hashes = self.conn.execute(
            "SELECT COUNT(*), COUNT(DISTINCT hash) FROM fingerprints"
        ).fetchone()

        return {
            "num_songs": num_songs,
            "unique_hashes": unique_hashes,
            "total_hash_entries": total_hashes,
            "avg_hashes_per_song": total_hashes / max(1, num_songs),
            "avg_collisions": total_hashes / max(1, unique_hashes),
        }


def index_audio_file(audio_path, database, metadata=None, workers=None):
    """
    Index a single audio file into the database.

    Args:
        audio_path: Path to a WAV file
        database: Catalog store
        metadata: Optional dict with title and artist
        workers: Threads used for spectral analysis

    Returns:
        song_id: ID assigned to this song (existing ID if already indexed)
    """
    audio_path = Path(audio_path)
    metadata = metadata or {}
    song_key = (metadata.get("title") or audio_path.stem, metadata.get("artist") or "Unknown")

    existing = database.song_exists(song_key)
    if existing is not None:
        logger.info(f"Song already in the database: {song_key[0]} (#{existing})")
        return existing

    logger.info(f"Indexing: {audio_path}")
    fingerprints, fp_metadata = fingerprint_audio(audio_path, workers=workers)

    return database.insert_song_fingerprints(
        song_key, fp_metadata["duration"], fingerprints, filepath=audio_path
    )


def index_directory(directory_path, database, pattern="*.wav", workers=None):
    """
    Index all audio files in a directory.

    Files that cannot be read are logged and skipped.

    Args:
        directory_path: Path to directory containing audio files
        database: Catalog store
        pattern: File pattern to match (e.g., "*.wav")
        workers: Threads used for spectral analysis

    Returns:
        List of song_ids that were indexed
    """
    directory = Path(directory_path)
    audio_files = sorted(directory.glob(pattern))

    if not audio_files:
        logger.warning(f"⚠ No audio files found in {directory_path}")
        return []

    logger.info(f"Found {len(audio_files)} audio files")

    indexed_ids = []
    start_time = time.time()

    for i, audio_file in enumerate(audio_files, 1):
        logger.info(f"[{i}/{len(audio_files)}] Processing: {audio_file.name}")
        try:
            song_id = index_audio_file(
                audio_file, database, {"title": audio_file.stem}, workers=workers
            )
        except (OSError, ValueError) as e:
            logger.error(f"✗ Error indexing {audio_file}: {e}")
            continue
        indexed_ids.append(song_id)

    elapsed = time.time() - start_time
    logger.info("✓ INDEXING COMPLETE")
    logger.info(f"  Successfully indexed: {len(indexed_ids)}/{len(audio_files)} files")
    logger.info(f"  Time taken: {elapsed:.1f} seconds")

    return indexed_ids
