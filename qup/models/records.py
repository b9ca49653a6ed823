"""
Result types for the content diff and install passes.
"""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class FileRecord:
    """The staged and installed state of one file, built fresh on every diff pass."""

    relative_path: str
    staged_path: Path
    installed_path: Path
    staged_digest: str
    installed_digest: str
    staged_mode: int
    installed_mode: int

    @property
    def in_sync(self) -> bool:
        return (
            self.staged_digest == self.installed_digest
            and self.staged_mode == self.installed_mode
        )


@dataclass(frozen=True)
class DiffResult:
    """Outcome of a diff pass. `changed` is False when the tree matched the last pass."""

    aggregate_digest: str
    records: tuple[FileRecord, ...]
    changed: bool

    @property
    def out_of_sync(self) -> list[FileRecord]:
        return [record for record in self.records if not record.in_sync]


@dataclass
class SyncReport:
    """Per-file outcome of an install pass."""

    copied: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)
    desktop_entries: list[Path] = field(default_factory=list)
    wrappers: list[Path] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled
