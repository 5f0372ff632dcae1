"""
bundle-cache: a local, integrity-verified cache for versioned actor bundles.
"""

__version__ = "0.1.0"
