"""
Parses the line-oriented instructions file into download batches for one platform.

    [General]
    file=<relative-name>
    file_destination=<dir>
    url=<base-url>

    [Unix]
    executable:<platform>=<relative-name>
    shell=<relative-name>
    local_executable=<dir>
    url=<base-url>

Every `url=` directive flushes the files accumulated in the open section into a
`DownloadBatch` and closes the section.
"""

import logging
from collections import OrderedDict
from collections.abc import Iterable, Iterator
from pathlib import Path

from qup.core.platform import Family, Platform
from qup.exceptions import ManifestError
from qup.models.manifest import Directive, DownloadBatch, FileSpec, Manifest, Section

log = logging.getLogger(__name__)

GENERAL = "General"

HEADER_FAMILIES = {
    "[General]": None,
    "[Unix]": Family.UNIX,
    "[MacOS]": Family.MACOS,
    "[Windows]": Family.WINDOWS,
}

DESTINATION_KEYS = ("file_destination", "local_executable")


def logical_lines(lines: Iterable[str]) -> Iterator[str]:
    """
    Joins backslash continuations, strips comments and skips blank lines.
    """
    pending = ""
    for raw in lines:
        line = raw.strip()
        if line.endswith("\\"):
            pending += line[:-1]
            continue
        line = pending + line
        pending = ""
        yield from _clean(line)
    if pending:
        yield from _clean(pending)


def _clean(line: str) -> Iterator[str]:
    position = line.find("#")
    if position >= 0:
        line = line[:position]
    line = line.strip()
    if line:
        yield line


def parse_directive(line: str) -> Directive | None:
    """Splits a `key=value` line on the first `=`. Empty keys or values yield None."""
    key, sep, value = line.partition("=")
    key, value = key.strip(), value.strip()
    if not sep or not key or not value:
        return None
    return Directive(key, value)


def _normalize_destination(value: str) -> str:
    if value == "." or value == "./":
        return ""
    if value.startswith("./"):
        value = value[2:]
    return value.strip("/")


class ManifestParser:
    """Turns instructions file text into a `Manifest` for the selected platform."""

    def __init__(self, platform: Platform):
        self.platform = platform

    def is_active(self, header: str) -> bool:
        if header not in HEADER_FAMILIES:
            return False
        family = HEADER_FAMILIES[header]
        return family is None or family == self.platform.family

    def parse_file(self, path: Path) -> Manifest:
        try:
            with open(path, encoding="utf-8") as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestError(f"Cannot open {path} for processing: {e}") from e
        return self.parse(text)

    def parse(self, text: str) -> Manifest:
        manifest = Manifest()
        section: Section | None = None
        files: OrderedDict[str, FileSpec] = OrderedDict()
        destination = ""

        for line in logical_lines(text.splitlines()):
            if line.startswith("[") and line.endswith("]"):
                if files:
                    log.debug(
                        f"Discarding {len(files)} unflushed file(s) from section "
                        f"'{section.name if section else '?'}'."
                    )
                section = Section(line[1:-1].strip(), self.is_active(line))
                manifest.sections.append(section)
                files.clear()
                destination = ""
                continue

            if section is None or not section.active:
                continue

            directive = parse_directive(line)
            if directive is None:
                continue
            section.directives.append(directive)
            key, value = directive

            if key == "url":
                manifest.batches.append(
                    DownloadBatch(
                        section.name,
                        tuple(spec.with_destination(destination) for spec in files.values()),
                        value,
                    )
                )
                files.clear()
                destination = ""
                section = None
            elif key in DESTINATION_KEYS:
                destination = _normalize_destination(value)
            elif key == "file":
                if self.platform.excludes(value):
                    log.debug(f"Skipping '{value}': excluded on {self.platform.label}.")
                    continue
                files[value] = FileSpec(value)
            elif key == "shell":
                files[value] = FileSpec(value, destination="", executable=True)
            elif key == "executable" or key.startswith("executable:"):
                if self._accepts_executable(key, value):
                    files[value] = FileSpec(value, executable=True)
            else:
                log.debug(f"Ignoring unknown directive '{key}'.")

        return manifest

    def _accepts_executable(self, key: str, value: str) -> bool:
        _, _, qualifier = key.partition(":")
        qualifier = qualifier.strip().lower()
        if qualifier and qualifier not in self.platform.qualifiers:
            return False
        return self.platform.matches_executable(value)
