"""Acoustic fingerprinting: constellation peaks, pair hashes, offset voting."""

from songprint.constellation import ConstellationPoint, extract_constellation
from songprint.fingerprint import Fingerprint, generate_fingerprints
from songprint.matcher import MatchResult, match_fingerprints

__all__ = [
    "ConstellationPoint",
    "Fingerprint",
    "MatchResult",
    "extract_constellation",
    "generate_fingerprints",
    "match_fingerprints",
]
