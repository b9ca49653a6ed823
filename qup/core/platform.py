"""
The table of target platforms a session can select.

The selected platform decides which instructions file sections apply, which
`executable` directives are kept, and how the installed program is started.
"""

import re
from dataclasses import dataclass
from enum import Enum


class Family(Enum):
    """Instructions file section families."""

    UNIX = "Unix"
    MACOS = "MacOS"
    WINDOWS = "Windows"
    NONE = ""


class LaunchStyle(Enum):
    """How the installed program is referenced when it is started."""

    BUNDLE = "bundle"
    EXE = "exe"
    PLAIN = "plain"


# Suffixes that mark a name as belonging to some platform's executable convention.
KNOWN_EXECUTABLE_SUFFIXES = (".exe", ".app")


@dataclass(frozen=True)
class Platform:
    label: str
    family: Family
    architecture: str
    executable_suffix: str
    launch_style: LaunchStyle
    excluded_extensions: tuple[str, ...] = ()
    desktop_entry_suffix: str = ""

    @property
    def token(self) -> str:
        """Qualifier used by `executable:<token>=` directives, e.g. `windows_11_amd64`."""
        return re.sub(r"[^a-z0-9]+", "_", self.label.lower()).strip("_")

    @property
    def qualifiers(self) -> frozenset[str]:
        names = {self.token}
        if self.architecture:
            names.add(self.architecture)
        return frozenset(names)

    def matches_executable(self, name: str) -> bool:
        """True if `name` follows this platform's executable naming convention."""
        lowered = name.lower()
        if self.executable_suffix:
            return lowered.endswith(self.executable_suffix)
        return not lowered.endswith(KNOWN_EXECUTABLE_SUFFIXES)

    def excludes(self, name: str) -> bool:
        return name.lower().endswith(self.excluded_extensions)


_UNIX_EXCLUDED = (".dll", ".dylib", ".exe")
_MACOS_EXCLUDED = (".dll", ".exe", ".so")
_WINDOWS_EXCLUDED = (".dylib", ".so")


def _unix(label: str, architecture: str) -> Platform:
    return Platform(
        label,
        Family.UNIX,
        architecture,
        "",
        LaunchStyle.PLAIN,
        _UNIX_EXCLUDED,
        ".desktop",
    )


PLATFORMS: tuple[Platform, ...] = (
    _unix("Debian 12 AMD64", "amd64"),
    _unix("Debian 12 ARM64", "arm64"),
    _unix("FreeBSD 14 AMD64", "amd64"),
    Platform(
        "macOS 14 AMD64", Family.MACOS, "amd64", "", LaunchStyle.BUNDLE, _MACOS_EXCLUDED
    ),
    Platform(
        "macOS 14 ARM64", Family.MACOS, "arm64", "", LaunchStyle.BUNDLE, _MACOS_EXCLUDED
    ),
    _unix("PiOS 12 ARM64", "arm64"),
    _unix("PiOS 12 ARMHF", "armhf"),
    _unix("Ubuntu 24.04 AMD64", "amd64"),
    _unix("Ubuntu 24.04 ARM64", "arm64"),
    Platform(
        "Windows 11 AMD64",
        Family.WINDOWS,
        "amd64",
        ".exe",
        LaunchStyle.EXE,
        _WINDOWS_EXCLUDED,
        ".lnk",
    ),
    Platform(
        "Windows 11 ARM64",
        Family.WINDOWS,
        "arm64",
        ".exe",
        LaunchStyle.EXE,
        _WINDOWS_EXCLUDED,
        ".lnk",
    ),
)

UNKNOWN_PLATFORM = Platform("", Family.NONE, "", "", LaunchStyle.PLAIN)

_BY_LABEL = {platform.label.lower(): platform for platform in PLATFORMS}
_BY_TOKEN = {platform.token: platform for platform in PLATFORMS}


def resolve_platform(label: str | None) -> Platform:
    """
    Maps a platform label (or its token) to its table entry. Unknown and empty
    labels resolve to `UNKNOWN_PLATFORM`.
    """
    if not label:
        return UNKNOWN_PLATFORM
    key = label.strip().lower()
    return _BY_LABEL.get(key) or _BY_TOKEN.get(key) or UNKNOWN_PLATFORM


def platform_labels() -> list[str]:
    return [platform.label for platform in PLATFORMS]
