"""
Copies the staging tree into the destination directory.

Permission bits follow the staged files. Desktop entries are also placed in the
platform's desktop location, and the product's wrapper script is taught to hand
over to the installed binary when one is present.
"""

import logging
import os
import shlex
import shutil
import stat
import tempfile
from collections.abc import Callable
from pathlib import Path

from qup.core.platform import Platform
from qup.exceptions import OperationCancelledError
from qup.models.records import SyncReport
from qup.utils.cancellation import CancellationToken
from qup.utils.path import desktop_entry_dir

log = logging.getLogger(__name__)

Reporter = Callable[[str, str], None]

WRAPPER_MARKER = "# Qup: official installation."
WRAPPER_SUFFIXES = (".sh", ".bash")


def launcher_stanza(destination: Path, product: str) -> list[str]:
    """
    Shell lines that run the installed binary, with the script's arguments, when it
    exists and is executable.
    """
    directory = shlex.quote(str(destination))
    binary = shlex.quote(str(destination / product))
    return [
        f"if [ -r {binary} ] && [ -x {binary} ]\n",
        "then\n",
        '    echo "Launching an official version."\n',
        f"    cd {directory} && exec ./{shlex.quote(product)} \"$@\"\n",
        "    exit $?\n",
        "fi\n",
    ]


class SyncEngine:
    """Installs a staging tree into a destination tree, file by file."""

    def __init__(
        self,
        product: str,
        platform: Platform,
        desktop_dir: Path | None = None,
        report: Reporter | None = None,
    ):
        self.product = product
        self.platform = platform
        self.desktop_dir = desktop_dir or desktop_entry_dir(platform)
        self.report = report or _log_report

    def is_wrapper(self, path: Path) -> bool:
        name = path.name.lower()
        return any(name == f"{self.product.lower()}{suffix}" for suffix in WRAPPER_SUFFIXES)

    def is_desktop_entry(self, path: Path) -> bool:
        suffix = self.platform.desktop_entry_suffix
        return bool(suffix) and path.name.lower().endswith(suffix)

    def install(
        self,
        staged_root: Path,
        destination_root: Path,
        token: CancellationToken | None = None,
    ) -> SyncReport:
        """
        Copies every entry of `staged_root` into `destination_root`. A failure on one
        file is reported and the walk goes on.
        """
        result = SyncReport()
        self.report("info", f"Copying {staged_root} into {destination_root}.")
        try:
            for current, dirs, files in os.walk(staged_root):
                dirs.sort()
                source_dir = Path(current)
                target_dir = destination_root / source_dir.relative_to(staged_root)
                if token:
                    token.raise_if_cancelled()
                if not self._make_dir(target_dir, result):
                    dirs.clear()
                    continue
                for name in sorted(files):
                    if token:
                        token.raise_if_cancelled()
                    self._install_file(
                        source_dir / name, target_dir / name, destination_root, result
                    )
        except OperationCancelledError:
            result.cancelled = True
            self.report("warning", "The installation was interrupted.")

        if result.failures:
            self.report(
                "error",
                f"Installation finished with {len(result.failures)} failure(s); "
                f"{len(result.copied)} file(s) copied.",
            )
        elif not result.cancelled:
            self.report(
                "success", f"Installation complete: {len(result.copied)} file(s) copied."
            )
        return result

    def _make_dir(self, path: Path, result: SyncReport) -> bool:
        try:
            path.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            result.failures.append((str(path), str(e)))
            self.report("error", f"Could not create {path}: {e}")
            return False

    def _install_file(
        self, source: Path, target: Path, destination_root: Path, result: SyncReport
    ) -> None:
        if self.is_wrapper(source):
            try:
                if self.prepare_wrapper(source, destination_root):
                    result.wrappers.append(source)
            except OSError as e:
                result.failures.append((str(source), str(e)))
                self.report("error", f"Could not prepare the wrapper {source.name}: {e}")

        if not self.copy_file(source, target, result):
            return
        if self.is_desktop_entry(source) and self.desktop_dir:
            entry = self.desktop_dir / source.name
            if self._make_dir(self.desktop_dir, result) and self.copy_file(
                source, entry, result, record=False
            ):
                result.desktop_entries.append(entry)

    def copy_file(
        self, source: Path, target: Path, result: SyncReport, record: bool = True
    ) -> bool:
        """Copies one file and applies the source's permission bits to the copy."""
        try:
            shutil.copyfile(source, target)
        except OSError as e:
            result.failures.append((str(target), str(e)))
            self.report("error", f"Copying {source} to {target}: failure ({e}).")
            return False
        try:
            os.chmod(target, stat.S_IMODE(os.stat(source).st_mode))
        except OSError as e:
            result.failures.append((str(target), str(e)))
            self.report("error", f"Setting the permissions of {target}: failure ({e}).")
            return False
        if record:
            result.copied.append(str(target))
        self.report("info", f"Copying {source} to {target}: success.")
        return True

    def prepare_wrapper(self, script: Path, destination_root: Path) -> bool:
        """
        Inserts the launcher stanza after the marker line of the wrapper script,
        replacing a stanza left there by an earlier install. The script is handled as
        bytes so any encoding survives. Returns False when the script has no marker or
        already carries the current stanza.
        """
        stanza = [line.encode() for line in launcher_stanza(destination_root, self.product)]
        marker = WRAPPER_MARKER.encode()
        with open(script, "rb") as f:
            lines = f.readlines()

        output = []
        changed = False
        index = 0
        while index < len(lines):
            line = lines[index]
            index += 1
            if line.strip() != marker:
                output.append(line)
                continue
            output.append(line if line.endswith(b"\n") else line + b"\n")
            existing = _stanza_length(lines, index, len(stanza))
            if lines[index : index + existing] != stanza:
                changed = True
            output.extend(stanza)
            index += existing

        if not changed:
            return False

        fd, temporary = tempfile.mkstemp(
            dir=script.parent, prefix=f".{script.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.writelines(output)
            os.replace(temporary, script)
        except OSError:
            Path(temporary).unlink(missing_ok=True)
            raise
        os.chmod(script, 0o755)
        self.report("info", f"Embedded the launcher stanza in {script.name}.")
        return True


def _stanza_length(lines: list[bytes], start: int, size: int) -> int:
    """Length of the launcher block starting at `start`, or 0 when there is none."""
    block = lines[start : start + size]
    if len(block) == size and block[0].startswith(b"if [ -r ") and block[-1].strip() == b"fi":
        return size
    return 0


def _log_report(level: str, text: str) -> None:
    getattr(log, {"success": "info"}.get(level, level), log.info)(text)
