"""
Compares the staging tree with the installed tree by content digest.

Staged files are downloaded again each round, so timestamps say nothing about
whether they changed. Every file under the staging root is hashed together with
its installed counterpart, and the per-file digests are folded into one aggregate
digest for the whole tree.
"""

import hashlib
import logging
import os
import stat
from collections.abc import Iterator
from pathlib import Path

from qup.models.records import DiffResult, FileRecord
from qup.utils.cancellation import CancellationToken

log = logging.getLogger(__name__)

READ_SIZE = 1024 * 1024


def walk_files(root: Path) -> Iterator[Path]:
    """Yields every file under `root` in a stable, sorted order."""
    for current, dirs, files in os.walk(root):
        dirs.sort()
        for name in sorted(files):
            yield Path(current) / name


class ContentDiffEngine:
    """Hashes the staging and installed trees in lock-step."""

    def __init__(self, algorithm: str = "sha256"):
        self.algorithm = algorithm

    def file_digest(self, path: Path) -> str:
        """Hex digest of a file, or an empty string if it does not exist."""
        hasher = hashlib.new(self.algorithm)
        try:
            with open(path, "rb") as f:
                while block := f.read(READ_SIZE):
                    hasher.update(block)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return ""
        return hasher.hexdigest()

    @staticmethod
    def file_mode(path: Path) -> int:
        try:
            return stat.S_IMODE(os.stat(path).st_mode)
        except (FileNotFoundError, NotADirectoryError):
            return 0

    def compute(
        self,
        staged_root: Path,
        installed_root: Path,
        previous_digest: str = "",
        token: CancellationToken | None = None,
    ) -> DiffResult:
        """
        Walks the staging tree and returns the per-file records and aggregate digest.

        Raises:
            OperationCancelledError: If the token is cancelled during the walk.
        """
        aggregate = hashlib.new(self.algorithm)
        records = []

        for staged in walk_files(staged_root):
            if token:
                token.raise_if_cancelled()

            relative = staged.relative_to(staged_root)
            installed = installed_root / relative
            try:
                record = FileRecord(
                    relative_path=relative.as_posix(),
                    staged_path=staged,
                    installed_path=installed,
                    staged_digest=self.file_digest(staged),
                    installed_digest=self.file_digest(installed),
                    staged_mode=self.file_mode(staged),
                    installed_mode=self.file_mode(installed),
                )
            except OSError as e:
                log.warning(f"Could not compare {relative}: {e}")
                continue

            aggregate.update(record.relative_path.encode("utf-8"))
            aggregate.update(record.staged_digest.encode("ascii"))
            aggregate.update(record.installed_digest.encode("ascii"))
            aggregate.update(f"{record.staged_mode:o}:{record.installed_mode:o}".encode())
            records.append(record)

        digest = aggregate.hexdigest()
        return DiffResult(
            aggregate_digest=digest,
            records=tuple(records),
            changed=digest != previous_digest,
        )
