"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core data
structures used throughout the application: configuration, favorites, the parsed
instructions file, and the results of diff and install passes.
"""

from .config import Favorite, QupConfig, SessionParameters
from .manifest import Directive, DownloadBatch, FileSpec, Manifest, Section
from .records import DiffResult, FileRecord, SyncReport
from .stats import RoundStats

__all__ = [
    "DiffResult",
    "Directive",
    "DownloadBatch",
    "Favorite",
    "FileRecord",
    "FileSpec",
    "Manifest",
    "QupConfig",
    "RoundStats",
    "Section",
    "SessionParameters",
    "SyncReport",
]
