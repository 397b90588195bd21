"""
Reads the player settings from an INI file, filling in defaults for keys an
older file does not have yet.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from listui.exceptions import ConfigurationError
from listui.models.config import PlayerConfig

log = logging.getLogger(__name__)

_LIST_KEYS = {"invidious_instances"}
_BOOL_KEYS = {"shuffle", "repeat"}
_INT_KEYS = {"max_downloads", "volume", "volume_step", "seek_seconds"}
_FLOAT_KEYS = {"request_timeout"}


def _to_ini(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(map(str, value))
    return str(value)


class ConfigManager:
    """Owns the `config.ini` of one user: reading, typing, defaults and writing."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> PlayerConfig:
        """
        Builds the settings for this run. The file is created with defaults on
        first use; `cli_options` entries that are not None win over the file.

        Raises:
            ConfigurationError: If the file cannot be parsed or a value is invalid.
        """
        if not self.config_file_path.is_file():
            log.info(f"Creating default configuration at [dim]{self.config_file_path}[/dim]")
            self.save_new_config({})

        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"{self.config_file_path} is not a valid INI file: {e}") from e

        if self._migrate_if_needed():
            log.info(f"Added new settings with default values to {self.config_file_path}")

        try:
            config_from_file = self._get_config_as_dict()
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in {self.config_file_path}: {e}") from e

        if cli_options:
            config_from_file.update(
                {key: value for key, value in cli_options.items() if value is not None}
            )

        try:
            return PlayerConfig(
                **config_from_file, config_path=str(self.config_file_path.parent)
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings in {self.config_file_path}:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """Writes a complete file: `settings` first, defaults for everything else."""
        parser = configparser.ConfigParser(interpolation=None)
        defaults = PlayerConfig()
        parser["DEFAULT"] = {
            key: _to_ini(settings.get(key, getattr(defaults, key)))
            for key in sorted(PlayerConfig.get_ini_keys())
        }
        try:
            self._write(parser)
        except OSError as e:
            raise ConfigurationError(f"Cannot write {self.config_file_path}: {e}") from e

    def _write(self, parser: configparser.ConfigParser):
        self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file_path, "w", encoding="utf-8") as f:
            parser.write(f)

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Converts the raw strings of the default section to the model's types."""
        section = self._parser["DEFAULT"]
        values: dict[str, Any] = {}
        for key in PlayerConfig.get_ini_keys():
            if key not in section:
                continue
            if key in _LIST_KEYS:
                values[key] = [
                    item.strip() for item in section.get(key, "").split(",") if item.strip()
                ]
            elif key in _BOOL_KEYS:
                values[key] = section.getboolean(key)
            elif key in _INT_KEYS:
                values[key] = section.getint(key)
            elif key in _FLOAT_KEYS:
                values[key] = section.getfloat(key)
            else:
                values[key] = section.get(key)
        return values

    def _migrate_if_needed(self) -> bool:
        """Adds keys introduced since the file was written. Returns True if any were."""
        defaults = PlayerConfig()
        section = self._parser["DEFAULT"]
        added = sorted(key for key in PlayerConfig.get_ini_keys() if key not in section)
        for key in added:
            section[key] = _to_ini(getattr(defaults, key))
            log.debug(f"Added missing config key '{key}' = '{section[key]}'")
        if not added:
            return False
        try:
            self._write(self._parser)
        except OSError as e:
            log.error(f"Could not update {self.config_file_path}: {e}")
            return False
        return True
