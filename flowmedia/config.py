"""Configuration management using XDG Base Directory Specification.

This module provides centralized configuration for the media session and the
library scanner, following Linux standards for config, cache, and data
directories.
"""

import configparser
import os
from pathlib import Path
from typing import Optional

from flowmedia.exceptions import ConfigurationError


class Config:
    """
    Configuration manager using XDG Base Directory Specification.

    Follows Linux standards:
    - Config: ~/.config/flowmedia/ (or XDG_CONFIG_HOME)
    - Cache: ~/.cache/flowmedia/ (or XDG_CACHE_HOME)
    - Data: ~/.local/share/flowmedia/ (or XDG_DATA_HOME)
    """

    _instance: Optional['Config'] = None

    def __init__(self) -> None:
        """
        Initialize configuration manager.

        Sets up XDG Base Directory paths and loads or creates configuration.
        """
        if Config._instance is not None:
            return

        self.config_home = Path(os.getenv('XDG_CONFIG_HOME', Path.home() / '.config'))
        self.cache_home = Path(os.getenv('XDG_CACHE_HOME', Path.home() / '.cache'))
        self.data_home = Path(os.getenv('XDG_DATA_HOME', Path.home() / '.local' / 'share'))

        self.app_name = 'flowmedia'
        self.config_dir = self.config_home / self.app_name
        self.cache_dir = self.cache_home / self.app_name
        self.data_dir = self.data_home / self.app_name

        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self.config_file = self.config_dir / 'config.ini'
        self.config = configparser.ConfigParser()

        self._load_config()

        Config._instance = self

    @classmethod
    def get_instance(cls) -> 'Config':
        """Get the singleton config instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next access re-reads the environment."""
        cls._instance = None

    def _load_config(self) -> None:
        """Load configuration from file or create defaults."""
        self._apply_defaults()
        if self.config_file.exists():
            try:
                self.config.read(self.config_file)
            except configparser.Error as e:
                raise ConfigurationError(f"Invalid config file {self.config_file}: {e}") from e
        else:
            self.save()

    def _apply_defaults(self) -> None:
        """Populate defaults; values read from the config file override them."""
        self.config['library'] = {
            'catalog_db': str(self.data_dir / 'catalog.sqlite3'),
            'downloads_substring': 'Download',
            'downloads_case_sensitive': 'true',
            'scan_workers': '4',
        }

        self.config['artwork'] = {
            'max_size': '512',
            'cache_dir': str(self.cache_dir / 'album_covers'),
        }

        self.config['session'] = {
            'identity': 'Flow',
            'bus_name': 'org.mpris.MediaPlayer2.flow',
            'app_name': 'Flow Playback',
            'desktop_entry': 'flow',
        }

        self.config['audio'] = {
            'route_poll_interval_ms': '1000',
        }

    def save(self) -> None:
        """
        Save configuration to file.

        Writes current configuration state to the config file.
        """
        try:
            with open(self.config_file, 'w') as f:
                self.config.write(f)
        except OSError as e:
            from flowmedia.logging import get_logger
            logger = get_logger(__name__)
            logger.error("Failed to save config: %s", e, exc_info=True)

    def get(self, section: str, key: str, fallback: Optional[str] = None) -> Optional[str]:
        """Get a configuration value."""
        return self.config.get(section, key, fallback=fallback)

    def set(self, section: str, key: str, value: str) -> None:
        """
        Set a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            value: Value to set (will be converted to string)
        """
        if section not in self.config:
            self.config.add_section(section)
        self.config.set(section, key, str(value))
        self.save()

    def get_bool(self, section: str, key: str, fallback: bool = False) -> bool:
        """Get a boolean configuration value."""
        try:
            return self.config.getboolean(section, key, fallback=fallback)
        except ValueError as e:
            raise ConfigurationError(f"[{section}] {key} must be a boolean") from e

    def get_int(self, section: str, key: str, fallback: int = 0) -> int:
        """Get an integer configuration value."""
        try:
            return self.config.getint(section, key, fallback=fallback)
        except ValueError as e:
            raise ConfigurationError(f"[{section}] {key} must be an integer") from e

    def get_path(self, section: str, key: str, fallback: Optional[Path] = None) -> Optional[Path]:
        """Get a path configuration value."""
        value = self.get(section, key)
        if value:
            return Path(value).expanduser()
        return fallback

    # Convenience properties
    @property
    def catalog_db(self) -> Path:
        """Get the media catalog database path."""
        return self.get_path('library', 'catalog_db', self.data_dir / 'catalog.sqlite3')

    @property
    def downloads_substring(self) -> str:
        """Path fragment that marks a track as downloaded."""
        return self.get('library', 'downloads_substring', 'Download')

    @property
    def downloads_case_sensitive(self) -> bool:
        return self.get_bool('library', 'downloads_case_sensitive', True)

    @property
    def scan_workers(self) -> int:
        """Size of the background worker pool."""
        return max(1, self.get_int('library', 'scan_workers', 4))

    @property
    def artwork_max_size(self) -> int:
        """Longest edge of normalized artwork, in pixels."""
        return max(1, self.get_int('artwork', 'max_size', 512))

    @property
    def album_art_cache_dir(self) -> Path:
        """Get album art cache directory."""
        art_dir = self.get_path('artwork', 'cache_dir', self.cache_dir / 'album_covers')
        art_dir.mkdir(parents=True, exist_ok=True)
        return art_dir

    @property
    def session_identity(self) -> str:
        return self.get('session', 'identity', 'Flow')

    @property
    def session_bus_name(self) -> str:
        return self.get('session', 'bus_name', 'org.mpris.MediaPlayer2.flow')

    @property
    def notification_app_name(self) -> str:
        return self.get('session', 'app_name', 'Flow Playback')

    @property
    def desktop_entry(self) -> str:
        return self.get('session', 'desktop_entry', 'flow')

    @property
    def route_poll_interval_ms(self) -> int:
        return max(100, self.get_int('audio', 'route_poll_interval_ms', 1000))

    @property
    def log_dir(self) -> Path:
        """Get log directory."""
        log_dir = self.data_dir / 'logs'
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir


# Convenience function
def get_config() -> Config:
    """Get the configuration instance."""
    return Config.get_instance()
