"""
Defines custom exceptions for the bundle cache to allow for more specific error handling.
"""


class BundleCacheError(Exception):
    """Base exception for all bundle cache errors."""


class FilesystemError(BundleCacheError):
    """
    Raised when a cache directory or file cannot be created, opened, or read for
    reasons unrelated to its content.
    """


class RetrievalError(BundleCacheError):
    """Raised when a bundle or its digest cannot be downloaded from the origin."""


class IntegrityError(BundleCacheError):
    """Raised when a digest file is unusable or does not match its bundle."""


class ConfigurationError(BundleCacheError):
    """Raised for issues related to configuration loading or validation."""
