"""
Network Layer.

This package handles every HTTP transfer: the instructions file and the concurrent
per-file downloads into the staging directory.
"""

from .downloader import (
    DownloadJob,
    DownloadOrchestrator,
    HttpSessionProvider,
    JobResult,
    JobState,
    TransferErrorKind,
    fetch_instructions,
)

__all__ = [
    "DownloadJob",
    "DownloadOrchestrator",
    "HttpSessionProvider",
    "JobResult",
    "JobState",
    "TransferErrorKind",
    "fetch_instructions",
]
