"""
Persists favorites in qup.ini, one `[favorite-<name>]` group per favorite.
"""

import configparser
import logging
from pathlib import Path

from pydantic import ValidationError

from qup.exceptions import ConfigurationError
from qup.models.config import Favorite

log = logging.getLogger(__name__)

GROUP_PREFIX = "favorite-"

# INI key -> Favorite field
KEYS = {
    "name": "name",
    "local-directory": "local_directory",
    "url": "url",
    "operating-system": "operating_system",
    "download-frequency": "download_frequency",
    "install-automatically": "install_automatically",
}


class FavoritesStore:
    """Reads and writes favorites. Every call re-reads the file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path

    def _read(self) -> configparser.ConfigParser:
        parser = configparser.ConfigParser(interpolation=None)
        if self.config_file_path.is_file():
            try:
                parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e
        return parser

    def _write(self, parser: configparser.ConfigParser) -> None:
        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as f:
                parser.write(f)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def list(self) -> list[Favorite]:
        parser = self._read()
        favorites = []
        for group in parser.sections():
            if not group.startswith(GROUP_PREFIX):
                continue
            try:
                favorites.append(_from_section(group, parser[group]))
            except ConfigurationError as e:
                log.warning(str(e))
        return sorted(favorites, key=lambda f: f.name.lower())

    def get(self, name: str) -> Favorite | None:
        parser = self._read()
        group = f"{GROUP_PREFIX}{name}"
        if not parser.has_section(group):
            return None
        return _from_section(group, parser[group])

    def save(self, favorite: Favorite) -> None:
        """Creates or replaces the favorite's group."""
        parser = self._read()
        parser[f"{GROUP_PREFIX}{favorite.name}"] = {
            key: _to_ini(getattr(favorite, field)) for key, field in KEYS.items()
        }
        self._write(parser)
        log.debug(f"Saved favorite '{favorite.name}'.")

    def delete(self, name: str) -> bool:
        parser = self._read()
        if not parser.remove_section(f"{GROUP_PREFIX}{name}"):
            return False
        self._write(parser)
        log.debug(f"Deleted favorite '{name}'.")
        return True


def _from_section(group: str, section: configparser.SectionProxy) -> Favorite:
    values = {field: section[key] for key, field in KEYS.items() if key in section}
    values.setdefault("name", group.removeprefix(GROUP_PREFIX))
    try:
        return Favorite(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid favorite in [{group}]:\n{e}") from e


def _to_ini(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
