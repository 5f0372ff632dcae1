"""
Storage Layer.

This package handles the on-disk layout of the bundle cache and the
configuration file.
"""

from .config_manager import ConfigManager
from .layout import BundleLayout, BundlePaths

__all__ = ["BundleLayout", "BundlePaths", "ConfigManager"]
