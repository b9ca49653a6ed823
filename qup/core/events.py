"""
Events a session posts on its queue for whoever presents it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from qup.models.records import FileRecord
from qup.utils.formatting import timestamp


class SessionState(Enum):
    IDLE = "idle"
    FETCHING_MANIFEST = "fetching-manifest"
    PARSING = "parsing"
    DOWNLOADING = "downloading"
    READY_TO_SYNC = "ready-to-sync"
    INSTALLING = "installing"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class LogLine:
    text: str
    level: str = "info"
    moment: datetime = field(default_factory=datetime.now)

    def render(self) -> str:
        return f"[{timestamp(self.moment)}]: {self.text}"


@dataclass(frozen=True)
class StateChanged:
    previous: SessionState
    current: SessionState


@dataclass(frozen=True)
class FilesDiffered:
    aggregate_digest: str
    records: tuple[FileRecord, ...]


@dataclass(frozen=True)
class DirectoryStatus:
    path: str
    writable: bool


SessionEvent = LogLine | StateChanged | FilesDiffered | DirectoryStatus
