"""
Transfer Layer.

This package is responsible for moving bundles from the origin to disk and
for checking them against their published digests.
"""

from .downloader import BundleDownloader
from .integrity import VerificationResult, VerificationStatus, verify_bundle

__all__ = [
    "BundleDownloader",
    "VerificationResult",
    "VerificationStatus",
    "verify_bundle",
]
