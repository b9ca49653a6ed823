"""
The session: one product's pipeline from instructions file to installed program.

    idle -> fetching-manifest -> parsing -> downloading -> ready-to-sync
         -> installing -> idle

`error` is reachable from every stage and `cancelled` from every busy state. All
transitions happen on the event loop; hashing and copying run on the session's
background worker.
"""

import asyncio
import logging
import uuid
from pathlib import Path

import aiofiles
from yarl import URL

from qup.core.events import (
    DirectoryStatus,
    FilesDiffered,
    LogLine,
    SessionEvent,
    SessionState,
    StateChanged,
)
from qup.core.parser import ManifestParser
from qup.core.platform import Platform, resolve_platform
from qup.core.worker import BackgroundWorker, TaskKind
from qup.exceptions import (
    LaunchError,
    ManifestError,
    OperationCancelledError,
    QupError,
    SessionBusyError,
    SessionValidationError,
    TransferError,
)
from qup.fs.diff import ContentDiffEngine
from qup.fs.launcher import ProcessLauncher
from qup.fs.sync import SyncEngine
from qup.models.config import QupConfig, SessionParameters
from qup.models.records import DiffResult, SyncReport
from qup.models.stats import RoundStats
from qup.net.downloader import DownloadOrchestrator, HttpSessionProvider, fetch_instructions
from qup.utils.formatting import format_duration, format_size
from qup.utils.path import (
    create_dir,
    instructions_file_name,
    is_writable_dir,
    parse_http_url,
    staging_path,
)

log = logging.getLogger(__name__)

STARTABLE = (SessionState.IDLE, SessionState.READY_TO_SYNC, SessionState.ERROR)
INSTALLABLE = (SessionState.IDLE, SessionState.READY_TO_SYNC)

_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "debug": logging.DEBUG,
}


class Session:
    """Sequences parse, download, diff, install and launch for one product."""

    def __init__(
        self,
        config: QupConfig,
        parameters: SessionParameters | None = None,
        session_id: str | None = None,
    ):
        self.config = config
        self.parameters = parameters or SessionParameters()
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.state = SessionState.IDLE
        self.events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self.stats = RoundStats()
        self.cancelled = False
        self.last_digest = ""
        self.last_diff: DiffResult | None = None
        self.last_sync: SyncReport | None = None
        self.last_error: str | None = None

        self.http = HttpSessionProvider(config)
        self.worker = BackgroundWorker()
        self.diff_engine = ContentDiffEngine(config.hash_algorithm)
        self._downloads: DownloadOrchestrator | None = None
        self._round_task: asyncio.Task | None = None
        self._install_task: asyncio.Task | None = None
        self._diff_task: asyncio.Task | None = None
        self._watch_task: asyncio.Task | None = None
        self._writability_task: asyncio.Task | None = None

    # --- Properties -------------------------------------------------------

    @property
    def product(self) -> str:
        return self.parameters.product

    @property
    def platform(self) -> Platform:
        return resolve_platform(self.parameters.platform)

    @property
    def staging_dir(self) -> Path:
        return staging_path(self.config.temp_dir, self.product)

    @property
    def destination(self) -> Path:
        return Path(self.parameters.destination).expanduser()

    @property
    def copying(self) -> bool:
        return _running(self._install_task) or self.worker.copying

    @property
    def downloading(self) -> bool:
        return _running(self._round_task)

    def is_active(self) -> bool:
        in_flight = self._downloads.in_flight if self._downloads else 0
        return bool(
            self.downloading or in_flight or self.copying or self.worker.busy
        )

    # --- Event stream -----------------------------------------------------

    def log(self, text: str, level: str = "info") -> None:
        """Writes a line to the module logger and to the session's event stream."""
        log.log(_LEVELS.get(level, logging.INFO), f"[{self.product or self.session_id}] {text}")
        if level != "debug":
            self.events.put_nowait(LogLine(text, level))

    def _thread_reporter(self):
        """A reporter that background threads can call safely."""
        loop = asyncio.get_running_loop()

        def report(level: str, text: str) -> None:
            loop.call_soon_threadsafe(self.log, text, level)

        return report

    def _report(self, level: str, text: str) -> None:
        self.log(text, level)

    def _set_state(self, state: SessionState) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        log.debug(f"[{self.session_id}] {previous.value} -> {state.value}")
        self.events.put_nowait(StateChanged(previous, state))

    def _fail(self, message: str) -> None:
        self.last_error = message
        self.log(message, "error")
        self._set_state(SessionState.ERROR)

    # --- Validation -------------------------------------------------------

    def _validate(self, require_url: bool = True) -> URL | None:
        if not self.parameters.destination:
            self._reject("Please provide a product directory.")
        if not self.product:
            self._reject("Please provide a product name.")
        if not require_url:
            return None
        url = parse_http_url(self.parameters.manifest_url)
        if url is None:
            self._reject("Please provide a valid product URL.")
        return url

    def _reject(self, message: str) -> None:
        self.log(message, "error")
        raise SessionValidationError(message)

    def _busy(self, message: str) -> None:
        self.log(message, "error")
        raise SessionBusyError(message)

    # --- Control surface --------------------------------------------------

    def start(self, parameters: SessionParameters | None = None) -> asyncio.Task:
        """
        Begins a round: fetch the instructions file, parse it and download the files.

        Returns:
            The task running the round.

        Raises:
            SessionBusyError: If a copy or another round is in progress.
            SessionValidationError: If the product, directory or URL is unusable.
        """
        if self.copying:
            self._busy("A copy is in progress. Downloads are not allowed.")
        if self.downloading:
            self._busy("A download is already in progress.")
        if self.state not in STARTABLE:
            self._busy(f"Cannot start a download while {self.state.value}.")
        if parameters is not None:
            self.parameters = parameters

        url = self._validate()
        self.cancelled = False
        self.last_error = None
        self._set_state(SessionState.FETCHING_MANIFEST)
        self._round_task = asyncio.create_task(
            self._run_round(url), name=f"qup-round-{self.session_id}"
        )
        return self._round_task

    def install(self) -> asyncio.Task:
        """
        Copies the staging directory into the destination directory.

        Raises:
            SessionBusyError: If a copy is already running or downloads are in flight.
            SessionValidationError: If there is nothing staged to install.
        """
        if self.copying:
            self._busy("A copy is already in progress.")
        if self.downloading:
            self._busy("Downloads are in progress. Please wait before installing.")
        if self.state not in INSTALLABLE:
            self._busy(f"Cannot install while {self.state.value}.")
        self._validate(require_url=False)
        if not self.staging_dir.is_dir():
            self._reject(f"Nothing has been downloaded into {self.staging_dir}.")

        return self._begin_install()

    def _begin_install(self) -> asyncio.Task:
        self.cancelled = False
        self._set_state(SessionState.INSTALLING)
        self._install_task = asyncio.create_task(
            self._run_install(), name=f"qup-install-{self.session_id}"
        )
        return self._install_task

    def refresh(self) -> asyncio.Task | None:
        """Schedules a diff pass unless the background worker is already in use."""
        after_install = asyncio.current_task() is self._install_task
        if self.worker.copying or (self.copying and not after_install):
            log.debug(f"[{self.session_id}] Copy in progress; diff skipped.")
            return None
        if self.worker.busy or _running(self._diff_task):
            return self._diff_task
        if not self.product or not self.parameters.destination:
            return None
        self._diff_task = asyncio.create_task(
            self._run_diff(), name=f"qup-diff-{self.session_id}"
        )
        return self._diff_task

    def launch(self) -> bool:
        """Starts the installed program. Never waits for it."""
        self._validate(require_url=False)
        launcher = ProcessLauncher(self.platform)
        self.log(f"Launching {launcher.executable_path(self.destination, self.product)}.")
        try:
            pid = launcher.launch(self.destination, self.product)
        except LaunchError as e:
            self.log(str(e), "error")
            return False
        self.log(f"Launched {self.product} (PID {pid}).", "success")
        return True

    async def interrupt(self) -> None:
        """
        Aborts downloads, cancels the background task and waits for it to return.
        Does nothing when the session is idle.
        """
        if self.state == SessionState.IDLE and not self.is_active():
            return

        self.cancelled = True
        self._set_state(SessionState.CANCELLED)
        self.log("Interrupting the session.", "warning")

        round_task = self._round_task
        if _running(round_task):
            round_task.cancel()
        if self._downloads:
            aborted = await self._downloads.abort()
            if aborted:
                self.log(f"Aborted {aborted} download(s).", "warning")
        if round_task:
            await asyncio.gather(round_task, return_exceptions=True)

        await self.worker.cancel_and_wait()
        for task in (self._install_task, self._diff_task):
            if task:
                await asyncio.gather(task, return_exceptions=True)

        self._set_state(SessionState.IDLE)
        self.log("The session is idle.")

    def watch(self) -> None:
        """
        Starts the periodic re-check (when a download frequency is set) and the
        destination writability poll.
        """
        if self.parameters.download_frequency > 0 and not _running(self._watch_task):
            self._watch_task = asyncio.create_task(self._periodic_start())
        if not _running(self._writability_task):
            self._writability_task = asyncio.create_task(self._poll_writability())

    async def unwatch(self) -> None:
        tasks = [t for t in (self._watch_task, self._writability_task) if _running(t)]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._watch_task = self._writability_task = None

    async def settle(self) -> None:
        """Waits until no round, copy or diff task is running."""
        while True:
            tasks = [
                t
                for t in (self._round_task, self._install_task, self._diff_task)
                if _running(t)
            ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        await self.unwatch()
        if self.is_active():
            await self.interrupt()
        await self.http.close()

    # --- Round ------------------------------------------------------------

    async def _run_round(self, url: URL) -> None:
        self.stats.reset()
        if self.worker.busy:
            await self.worker.cancel_and_wait()

        staging = self.staging_dir
        try:
            await asyncio.to_thread(create_dir, staging)
        except OSError as e:
            self._fail(f"Creating {staging}... Failure ({e}).")
            return
        self.log(f"Creating {staging}... Created.", "success")

        manifest_file = staging / instructions_file_name(url)
        self.log(f"Downloading the file {url}.")
        try:
            data = await fetch_instructions(self.http, str(url), self.config)
        except (TransferError, ManifestError) as e:
            self._fail(str(e))
            return
        try:
            async with aiofiles.open(manifest_file, "wb") as f:
                await f.write(data)
        except OSError as e:
            self._fail(f"Could not write the file {manifest_file.name} ({e}).")
            return
        self.log(f"File {manifest_file.name} saved locally.", "success")

        self._set_state(SessionState.PARSING)
        platform = self.platform
        try:
            manifest = await asyncio.to_thread(
                ManifestParser(platform).parse_file, manifest_file
            )
        except ManifestError as e:
            self._fail(str(e))
            return
        self.log(
            f"Parsed {manifest_file.name}: {len(manifest.batches)} batch(es), "
            f"{manifest.file_count} file(s) for {platform.label or 'no specific platform'}."
        )

        if not manifest.batches:
            self.log("The instructions file lists no files for this platform.", "warning")
            self._ready()
            return

        downloads = DownloadOrchestrator(
            self.http, staging, self.config, self._report, self.stats
        )
        self._downloads = downloads
        for batch in manifest.batches:
            downloads.dispatch(batch)
            self._set_state(SessionState.DOWNLOADING)

        if not await downloads.wait_settled():
            self._fail(
                f"{self.stats.files_failed} of {self.stats.files_dispatched} file(s) "
                "could not be downloaded. Nothing will be installed."
            )
            return

        self.log(
            f"Downloaded {self.stats.files_downloaded} file(s) "
            f"({format_size(self.stats.bytes_downloaded)}) in "
            f"{format_duration(self.stats.elapsed)}.",
            "success",
        )
        self._ready()

    def _ready(self) -> None:
        self._set_state(SessionState.READY_TO_SYNC)
        if self.parameters.auto_install:
            self._begin_install()
        else:
            self.refresh()

    # --- Install ----------------------------------------------------------

    async def _run_install(self) -> SyncReport | None:
        if self.worker.busy:
            await self.worker.cancel_and_wait()

        destination, staging = self.destination, self.staging_dir
        try:
            await asyncio.to_thread(create_dir, destination)
        except OSError as e:
            self._fail(f"Creating {destination}... Failure ({e}).")
            return None

        if self.cancelled:
            return None
        self.log(f"Installing {self.product} into {destination}.")
        engine = SyncEngine(
            self.product, self.platform, self.config.desktop_dir, self._thread_reporter()
        )
        try:
            report = await self.worker.submit(
                TaskKind.COPY, lambda token: engine.install(staging, destination, token)
            )
        except Exception as e:
            self._fail(f"The installation failed: {e}")
            return None

        self.last_sync = report
        self.stats.files_copied = len(report.copied)
        self.stats.copy_failures = len(report.failures)
        if report.cancelled or self.cancelled:
            return report

        self._set_state(SessionState.IDLE)
        self.refresh()
        return report

    # --- Diff -------------------------------------------------------------

    async def _run_diff(self) -> DiffResult | None:
        staged, installed = self.staging_dir, self.destination
        if not staged.is_dir() or self.worker.busy:
            return None

        previous = self.last_digest
        try:
            result = await self.worker.submit(
                TaskKind.DIFF,
                lambda token: self.diff_engine.compute(staged, installed, previous, token),
            )
        except OperationCancelledError:
            return None
        except OSError as e:
            self.log(f"Could not compare {staged} with {installed}: {e}", "error")
            return None

        self.last_diff = result
        if not result.changed:
            return result

        self.last_digest = result.aggregate_digest
        self.log(
            f"{len(result.out_of_sync)} of {len(result.records)} file(s) differ from "
            "the installed copy."
        )
        self.events.put_nowait(FilesDiffered(result.aggregate_digest, result.records))
        return result

    # --- Timers -----------------------------------------------------------

    async def _periodic_start(self) -> None:
        interval = self.parameters.download_frequency * 60
        while True:
            await asyncio.sleep(interval)
            if self.state not in STARTABLE or self.is_active():
                continue
            try:
                self.start()
            except QupError as e:
                log.debug(f"[{self.session_id}] Scheduled download skipped: {e}")

    async def _poll_writability(self) -> None:
        last: bool | None = None
        while True:
            path = self.parameters.destination
            writable = await asyncio.to_thread(is_writable_dir, path)
            if writable != last:
                self.events.put_nowait(DirectoryStatus(path, writable))
                if not writable:
                    self.log(f"{path or 'The product directory'} is not writable.", "warning")
                last = writable
            await asyncio.sleep(self.config.writability_interval)


def _running(task: asyncio.Task | None) -> bool:
    return task is not None and not task.done()
