"""
Manages loading, validation, and migration of the INI settings file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from qup.exceptions import ConfigurationError
from qup.models.config import QupConfig

log = logging.getLogger(__name__)

SETTINGS_SECTION = "settings"
SETTINGS_FILE_NAME = "qup.ini"


class ConfigManager:
    """Handles all operations related to the `[settings]` section of qup.ini."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> QupConfig:
        """
        Loads settings from the INI file, applies CLI overrides, and validates them.
        A missing file is not an error: the defaults apply.

        Args:
            cli_options: Options provided on the command line. `None` values are
                ignored.

        Returns:
            A validated QupConfig object.

        Raises:
            ConfigurationError: If the file cannot be parsed or validation fails.
        """
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e
            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )

        settings = self._get_config_as_dict()
        if cli_options:
            settings.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return QupConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_config(self, config: QupConfig) -> None:
        """Writes `config` into the settings section, keeping every other section."""
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e

        self._parser[SETTINGS_SECTION] = {
            key: _to_ini(value)
            for key, value in config.model_dump().items()
            if value is not None
        }
        self._write()

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the settings section; keys left empty fall back to model defaults."""
        if not self._parser.has_section(SETTINGS_SECTION):
            return {}
        section = self._parser[SETTINGS_SECTION]
        known = QupConfig.get_ini_keys()
        settings: dict[str, Any] = {}
        for key, value in section.items():
            if key not in known:
                log.warning(f"Ignoring unknown setting '{key}'.")
                continue
            if value.strip():
                settings[key] = value.strip()
        return settings

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing settings file."""
        if not self._parser.has_section(SETTINGS_SECTION):
            self._parser.add_section(SETTINGS_SECTION)
        section = self._parser[SETTINGS_SECTION]
        defaults = QupConfig()
        needs_saving = False

        for key in sorted(QupConfig.get_ini_keys()):
            if key in section:
                continue
            section[key] = _to_ini(getattr(defaults, key))
            needs_saving = True
            log.debug(
                f"Migrating config: added missing key '{key}' with "
                f"value '{section[key]}'."
            )

        if needs_saving:
            try:
                self._write()
            except ConfigurationError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False
        return needs_saving

    def _write(self) -> None:
        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                self._parser.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e


def _to_ini(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
