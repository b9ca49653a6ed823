"""
Utilities for handling file paths, staging directories and URL validation.
"""

import os
import re
from pathlib import Path

from pathvalidate import sanitize_filename
from yarl import URL

from qup.core.platform import Family, Platform

STAGING_PREFIX = "qup-"
DEFAULT_INSTRUCTIONS_NAME = "qup.txt"


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def staging_path(temp_dir: Path, product: str) -> Path:
    """
    Returns `<temp>/qup-<product>`. The same product always maps to the same
    staging directory.
    """
    name = sanitize_filename(product.strip(), replacement_text="_") or "product"
    return Path(temp_dir) / f"{STAGING_PREFIX}{name}"


def home_path() -> Path:
    """`$QUP_HOME` with duplicate and trailing separators removed, else `~/.qup`."""
    value = os.getenv("QUP_HOME", "").strip()
    if not value:
        return Path.home() / ".qup"
    value = re.sub(r"[\\/]+", lambda m: m.group(0)[0], value)
    if len(value) > 1:
        value = value.rstrip("/\\")
    return Path(value).expanduser()


def parse_http_url(value: str) -> URL | None:
    """Returns the URL if it is an absolute http(s) URL with a host, else None."""
    try:
        url = URL(value.strip())
    except (ValueError, TypeError):
        return None
    if url.scheme not in ("http", "https") or not url.host:
        return None
    return url


def instructions_file_name(url: URL) -> str:
    name = sanitize_filename(url.name, replacement_text="_")
    return name or DEFAULT_INSTRUCTIONS_NAME


def desktop_entry_dir(platform: Platform) -> Path | None:
    """The user location where desktop entries or shortcuts are installed."""
    if platform.family == Family.UNIX:
        data_home = os.getenv("XDG_DATA_HOME", "").strip()
        base = Path(data_home) if data_home else Path.home() / ".local" / "share"
        return base / "applications"
    if platform.family == Family.WINDOWS:
        return Path.home() / "Desktop"
    return None


def is_writable_dir(path: str | Path) -> bool:
    if not path:
        return False
    directory = Path(path)
    return directory.is_dir() and os.access(directory, os.W_OK)
