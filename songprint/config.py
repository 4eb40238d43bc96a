class AudioConfig:
    """Configuration for audio conditioning"""

    # Every clip is reduced to mono at this rate before analysis
    TARGET_SAMPLE_RATE = 11025

    # Single-pole band-pass (~20 Hz - ~5 kHz at 44.1 kHz)
    HP_COEF = 0.98
    LP_COEF = 0.2

    # PCM sample range
    SAMPLE_MIN = -32768
    SAMPLE_MAX = 32767


class ConstellationConfig:
    """Configuration for spectral peak extraction"""

    # Analysis window: fixed byte budget divided by bytes per sample
    CHUNK_BYTES = 4096 * 2
    BYTES_PER_SAMPLE = 2
    OVERLAP_PERCENT = 50

    # Peak detection parameters
    PEAK_WINDOW_BINS = 5
    MIN_FREQ_HZ = 20
    MAX_FREQ_HZ = 5000
    PEAKS_PER_CHUNK = 4

    # Normalized magnitude scale
    MAGNITUDE_SCALE = 100.0


class HashConfig:
    """Configuration for hash generation"""

    # Anchor / target selection
    ANCHORS_PER_CHUNK = 3
    TARGET_CHUNK_OFFSETS = (1, 2, 3, 4, 5, 6, 8, 12)
    MAX_PAIRS_PER_ANCHOR = 3
    MIN_PAIR_CONFIDENCE = 40

    # Unison through octave
    HARMONIC_RATIOS = (1.0, 1.125, 1.2, 1.25, 1.333, 1.5, 1.667, 1.875, 2.0)
    RATIO_TOLERANCE = 0.05
    SAME_BAND_HZ = 20

    # Adaptive frequency quantization (upper bound, bin width)
    FREQ_BANDS = ((300, 5), (1000, 10))
    HIGH_FREQ_BIN = 20

    # FNV-1a, 64 bit
    FNV_OFFSET = 14695981039346656037
    FNV_PRIME = 1099511628211

    # Decimal places kept for stored times
    TIME_DECIMALS = 3


class DatabaseConfig:
    """Configuration for database storage"""

    # Storage paths
    DB_FILE = "./data/db/fingerprint_database.pkl"
    METADATA_FILE = "./data/db/song_metadata.json"
    SQLITE_FILE = "./data/db/fingerprints.db"

    # Rows per round trip
    LOOKUP_BATCH_SIZE = 100
    INSERT_BATCH_SIZE = 1000


class MatchConfig:
    """Configuration for matching algorithm"""

    # Matching thresholds
    MIN_MATCHES = 3
    MIN_CONFIDENCE = 0.05

    # Histogram binning (seconds)
    BIN_SIZE = 0.1
