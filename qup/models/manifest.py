"""
Data structures produced by the instructions file parser.
"""

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import NamedTuple


class Directive(NamedTuple):
    """A single `key=value` instruction line."""

    key: str
    value: str


@dataclass(frozen=True)
class FileSpec:
    """
    One file to fetch.

    `name` is relative to the batch URL. `destination` is the subdirectory of the
    staging area the file is written under; `None` means it has not been resolved
    yet and the section destination applies when the batch is flushed.
    """

    name: str
    destination: str | None = None
    executable: bool = False

    @property
    def target(self) -> PurePosixPath:
        """Path of the staged file, relative to the staging directory."""
        if self.destination:
            return PurePosixPath(self.destination) / self.name
        return PurePosixPath(self.name)

    def with_destination(self, destination: str) -> "FileSpec":
        if self.destination is not None:
            return self
        return FileSpec(self.name, destination, self.executable)


@dataclass(frozen=True)
class DownloadBatch:
    """The files accumulated in one section, flushed by a `url=` directive."""

    section: str
    files: tuple[FileSpec, ...]
    url: str

    def url_for(self, spec: FileSpec) -> str:
        return f"{self.url.rstrip('/')}/{spec.name.lstrip('/')}"


@dataclass
class Section:
    """A named scope of directives. Only active sections contribute files."""

    name: str
    active: bool
    directives: list[Directive] = field(default_factory=list)


@dataclass
class Manifest:
    """The parsed instructions file."""

    sections: list[Section] = field(default_factory=list)
    batches: list[DownloadBatch] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return sum(len(batch.files) for batch in self.batches)
