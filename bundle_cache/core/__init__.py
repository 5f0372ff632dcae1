"""
Core engine of the bundle cache.

The `BundleFetcher` ties together the on-disk layout, the downloader and the
integrity check to hand callers a bundle path they can trust.
"""

from .fetcher import BundleFetcher, BundleSource, fetch_bundle

__all__ = ["BundleFetcher", "BundleSource", "fetch_bundle"]
