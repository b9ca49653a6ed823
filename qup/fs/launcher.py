"""
Starts the installed program without waiting for it.
"""

import logging
import os
import subprocess
from pathlib import Path

from qup.core.platform import LaunchStyle, Platform
from qup.exceptions import LaunchError

log = logging.getLogger(__name__)


class ProcessLauncher:
    """Builds the platform's program reference and spawns it detached."""

    def __init__(self, platform: Platform):
        self.platform = platform

    def executable_path(self, destination: Path, product: str) -> Path:
        style = self.platform.launch_style
        if style == LaunchStyle.BUNDLE:
            return destination / f"{product}.app"
        if style == LaunchStyle.EXE:
            return destination / f"{product}.exe"
        return destination / product

    def command(self, destination: Path, product: str) -> list[str]:
        path = self.executable_path(destination, product)
        if self.platform.launch_style == LaunchStyle.BUNDLE:
            return ["open", "-a", str(path)]
        return [str(path)]

    def launch(self, destination: Path, product: str) -> int:
        """
        Starts the program with `destination` as its working directory.

        Returns:
            The process ID of the started program.

        Raises:
            LaunchError: If the program is missing or cannot be started.
        """
        path = self.executable_path(destination, product)
        if not path.exists():
            raise LaunchError(f"{path} does not exist. Please install the product first.")

        kwargs: dict = {
            "cwd": str(destination),
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
        }
        if os.name == "nt":
            kwargs["creationflags"] = (
                subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.DETACHED_PROCESS
            )
        else:
            kwargs["start_new_session"] = True

        try:
            process = subprocess.Popen(self.command(destination, product), **kwargs)
        except OSError as e:
            raise LaunchError(f"Could not launch {path}: {e}") from e
        log.debug(f"Launched {path} with PID {process.pid}.")
        return process.pid
