"""
Filesystem Layer.

This package compares, installs and launches: the content diff between the staging
and installed trees, the permission-preserving copy, and the process launcher.
"""

from .diff import ContentDiffEngine
from .launcher import ProcessLauncher
from .sync import SyncEngine

__all__ = ["ContentDiffEngine", "ProcessLauncher", "SyncEngine"]
