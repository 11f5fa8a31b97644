"""Content-addressed segment audio cache."""

from .keys import make_cache_key
from .segment_cache import CacheStats, SegmentCache

__all__ = ["CacheStats", "SegmentCache", "make_cache_key"]
