"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from bundle_cache.exceptions import ConfigurationError
from bundle_cache.models.config import FetcherConfig

log = logging.getLogger(__name__)


class ConfigManager:
    """Handles all operations related to the fetcher's INI config file."""

    def __init__(self, config_file_path: Path, default_cache_dir: Path):
        self.config_file_path = config_file_path
        self.default_cache_dir = default_cache_dir
        self._parser = configparser.ConfigParser(interpolation=None)

    def _defaults(self) -> FetcherConfig:
        return FetcherConfig.model_construct(cache_dir=self.default_cache_dir)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> FetcherConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        A missing file is not an error: defaults are used and CLI overrides applied.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated FetcherConfig object.

        Raises:
            ConfigurationError: If the config file is unreadable or validation fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(
                    f"Error parsing configuration file: {e}"
                ) from e

            if self._migrate_if_needed():
                log.info("Configuration file was updated with new default values.")

            config_from_file = self._get_config_as_dict()
        else:
            log.debug(
                f"No configuration file at '{self.config_file_path}', using defaults."
            )

        if cli_options:
            config_from_file.update(
                {k: v for k, v in cli_options.items() if v is not None}
            )

        config_from_file.setdefault("cache_dir", self.default_cache_dir)
        try:
            return FetcherConfig(**config_from_file)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save.
        """
        try:
            validated = FetcherConfig(
                **{"cache_dir": self.default_cache_dir, **settings}
            )
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {
            key: str(getattr(validated, key))
            for key in sorted(FetcherConfig.get_ini_keys())
        }

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        defaults = self._defaults()
        try:
            return {
                "cache_dir": Path(
                    section.get("cache_dir", str(self.default_cache_dir))
                ).expanduser(),
                "origin_url": section.get("origin_url", defaults.origin_url),
                "family": section.get("family", defaults.family),
                "connect_timeout": section.getfloat(
                    "connect_timeout", defaults.connect_timeout
                ),
                "read_timeout": section.getfloat(
                    "read_timeout", defaults.read_timeout
                ),
                "chunk_size": section.getint("chunk_size", defaults.chunk_size),
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = self._defaults()
        needs_saving = False

        config_section = self._parser["DEFAULT"]

        for key in sorted(FetcherConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = str(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
