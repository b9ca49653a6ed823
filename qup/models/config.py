"""
Pydantic models for application configuration, session parameters and favorites.
Provides robust validation for all settings.
"""

import hashlib
import tempfile
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from qup import __version__

END_OF_FILE_MARKER = "# End of file. Required comment."


class QupConfig(BaseModel):
    """Settings shared by every session. Passed explicitly, never stored globally."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Filesystem
    temp_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    desktop_dir: Path | None = None

    # Network
    chunk_size: int = 65536
    connect_timeout: float = 15.0
    max_connections: int = 8
    user_agent: str = f"qup/{__version__}"
    end_of_file_marker: str = END_OF_FILE_MARKER

    # Scheduling
    settle_delay: float = 0.25
    writability_interval: float = 1.5

    # Change detection
    hash_algorithm: str = "sha256"

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v < 4096 or v > 8 * 1024 * 1024:
            raise ValueError("Chunk size must be between 4 KB and 8 MB.")
        return v

    @field_validator("max_connections")
    @classmethod
    def validate_connections(cls, v: int) -> int:
        if v < 1 or v > 64:
            raise ValueError("Max connections must be between 1 and 64.")
        return v

    @field_validator("connect_timeout", "settle_delay", "writability_interval")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Intervals and timeouts cannot be negative.")
        return v

    @field_validator("hash_algorithm")
    @classmethod
    def validate_hash_algorithm(cls, v: str) -> str:
        v = v.lower()
        if v not in hashlib.algorithms_available or v.startswith("shake"):
            raise ValueError(f"Unsupported hash algorithm: {v}")
        return v

    @field_validator("end_of_file_marker")
    @classmethod
    def validate_marker(cls, v: str) -> str:
        if not v:
            raise ValueError("The end-of-file marker cannot be empty.")
        return v

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that may appear in the INI settings section."""
        return set(cls.model_fields)


class SessionParameters(BaseModel):
    """
    What a session needs to run. Content is checked by the session itself so that a
    bad value is reported as a rejected start rather than a construction error.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    product: str = ""
    manifest_url: str = ""
    destination: str = ""
    platform: str = ""
    auto_install: bool = False
    download_frequency: int = 0


class Favorite(BaseModel):
    """A named, persisted set of session parameters."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    name: str
    local_directory: str
    url: str
    operating_system: str = ""
    download_frequency: int = 0
    install_automatically: bool = False

    @field_validator("name", "local_directory", "url")
    @classmethod
    def validate_required(cls, v: str) -> str:
        if not v:
            raise ValueError("Please complete the required fields.")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if any(c in v for c in "[]/\\"):
            raise ValueError("Favorite names cannot contain brackets or slashes.")
        return v

    @field_validator("download_frequency")
    @classmethod
    def validate_frequency(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Download frequency must be zero (never) or positive.")
        return v

    def to_parameters(self) -> SessionParameters:
        return SessionParameters(
            product=self.name,
            manifest_url=self.url,
            destination=self.local_directory,
            platform=self.operating_system,
            auto_install=self.install_automatically,
            download_frequency=self.download_frequency,
        )
