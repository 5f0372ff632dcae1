"""
Data Models Layer.

This package contains the core data structures used throughout the cache,
such as the bundle identity, configuration and statistics.
"""

from .config import FetcherConfig
from .identity import BundleIdentity
from .stats import FetchStats

__all__ = ["BundleIdentity", "FetchStats", "FetcherConfig"]
