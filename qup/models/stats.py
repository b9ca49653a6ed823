"""
Dataclass for tracking the statistics of one download and install round.
"""

import time
from dataclasses import dataclass, field


@dataclass
class RoundStats:
    """Tracks statistics for a single session round."""

    files_dispatched: int = 0
    files_downloaded: int = 0
    files_failed: int = 0
    files_aborted: int = 0
    bytes_downloaded: int = 0
    files_copied: int = 0
    copy_failures: int = 0
    started_at: float = field(default_factory=time.monotonic, repr=False)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def all_downloaded(self) -> bool:
        return self.files_failed == 0 and self.files_aborted == 0

    def reset(self) -> None:
        """Clears every counter for a new round."""
        self.files_dispatched = 0
        self.files_downloaded = 0
        self.files_failed = 0
        self.files_aborted = 0
        self.bytes_downloaded = 0
        self.files_copied = 0
        self.copy_failures = 0
        self.started_at = time.monotonic()
