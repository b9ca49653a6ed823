"""
Fetches the instructions file and fans out one streaming download per file.

Each job reports a typed `JobResult` on the orchestrator's result queue. The session
waits for the in-flight set to drain and settle before it decides whether the round
succeeded.
"""

import asyncio
import itertools
import logging
import os
import stat
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import aiofiles
import aiohttp

from qup.exceptions import ManifestError, TransferError
from qup.models.config import QupConfig
from qup.models.manifest import DownloadBatch, FileSpec
from qup.models.stats import RoundStats

log = logging.getLogger(__name__)

Reporter = Callable[[str, str], None]

EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


class JobState(Enum):
    PENDING = "pending"
    OK = "ok"
    FAILED = "failed"
    ABORTED = "aborted"


class TransferErrorKind(Enum):
    NETWORK = "network"
    HTTP_STATUS = "http-status"
    FILESYSTEM = "filesystem"
    ABORTED = "aborted"


@dataclass(frozen=True)
class JobResult:
    job_id: int
    state: JobState
    error_kind: TransferErrorKind | None = None
    message: str = ""


@dataclass
class DownloadJob:
    """One in-flight fetch of a single file."""

    job_id: int
    url: str
    target: Path
    spec: FileSpec
    state: JobState = JobState.PENDING
    bytes_written: int = 0
    error: str | None = None
    task: asyncio.Task | None = field(default=None, repr=False)


class HttpSessionProvider:
    """
    Lazily creates the aiohttp ClientSession owned by one qup session.

    There is no request timeout beyond the connect timeout: a stalled server keeps
    a job open until the session is interrupted.
    """

    def __init__(self, config: QupConfig):
        self.config = config
        self._session: aiohttp.ClientSession | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session and not self._session.closed:
                return self._session

            connector = aiohttp.TCPConnector(
                limit=self.config.max_connections * 2,
                limit_per_host=self.config.max_connections,
                ttl_dns_cache=600,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
            )
            timeout = aiohttp.ClientTimeout(
                total=None, sock_connect=self.config.connect_timeout or None
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={"User-Agent": self.config.user_agent},
            )
            log.debug(
                f"Created HTTP pool with limit_per_host={self.config.max_connections}"
            )
        return self._session

    async def close(self) -> None:
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                log.debug("HTTP pool closed.")
            self._session = None


async def fetch_instructions(
    http: HttpSessionProvider, url: str, config: QupConfig
) -> bytes:
    """
    Downloads the instructions file. Bytes accumulate until the trimmed content ends
    with the end-of-file marker; a transfer that finishes without it is an error.
    """
    marker = config.end_of_file_marker.encode("utf-8")
    data = bytearray()
    try:
        session = await http.get()
        async with session.get(url, allow_redirects=True) as response:
            response.raise_for_status()
            async for chunk in response.content.iter_chunked(config.chunk_size):
                data.extend(chunk)
                # Only the tail can hold the marker; trailing blank lines are allowed.
                if bytes(data[-(len(marker) + 64) :]).rstrip().endswith(marker):
                    break
    except aiohttp.ClientResponseError as e:
        raise TransferError(f"{url} answered {e.status} {e.message}") from e
    except aiohttp.ClientError as e:
        raise TransferError(f"Could not download {url}: {e}") from e

    if not bytes(data).rstrip().endswith(marker):
        raise ManifestError(
            f"The instructions file {url} ended without the required "
            f"'{config.end_of_file_marker}' line."
        )
    return bytes(data)


class DownloadOrchestrator:
    """Dispatches batches of files into the staging directory and tracks the outcome."""

    def __init__(
        self,
        http: HttpSessionProvider,
        staging_dir: Path,
        config: QupConfig,
        report: Reporter,
        stats: RoundStats | None = None,
    ):
        self.http = http
        self.staging_dir = staging_dir
        self.config = config
        self.report = report
        self.stats = stats or RoundStats()
        self.results: asyncio.Queue[JobResult] = asyncio.Queue()
        self.ok = True
        self._jobs: dict[int, DownloadJob] = {}
        self._ids = itertools.count(1)

    @property
    def in_flight(self) -> int:
        return len(self._jobs)

    def reset(self) -> None:
        """Starts a new round. Must only be called when nothing is in flight."""
        self.ok = True
        self.results = asyncio.Queue()
        self._jobs.clear()

    def dispatch(self, batch: DownloadBatch) -> list[DownloadJob]:
        jobs = []
        for spec in batch.files:
            if not spec.name.strip():
                continue
            job = DownloadJob(
                job_id=next(self._ids),
                url=batch.url_for(spec),
                target=self.staging_dir / Path(*spec.target.parts),
                spec=spec,
            )
            self.report("info", f"Downloading {job.url}.")
            job.task = asyncio.create_task(self._run(job), name=f"qup-job-{job.job_id}")
            self._jobs[job.job_id] = job
            self.stats.files_dispatched += 1
            jobs.append(job)
        return jobs

    async def _run(self, job: DownloadJob) -> None:
        try:
            await self._stream(job)
            if job.spec.executable:
                await asyncio.to_thread(_mark_executable, job.target)
        except asyncio.CancelledError:
            await asyncio.to_thread(_remove_partial, job.target)
            self._finish(job, JobResult(job.job_id, JobState.ABORTED, TransferErrorKind.ABORTED))
            raise
        except aiohttp.ClientResponseError as e:
            await self._fail(job, TransferErrorKind.HTTP_STATUS, f"{e.status} {e.message}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await self._fail(job, TransferErrorKind.NETWORK, str(e) or type(e).__name__)
        except OSError as e:
            await self._fail(job, TransferErrorKind.FILESYSTEM, str(e))
        else:
            self._finish(job, JobResult(job.job_id, JobState.OK))

    async def _stream(self, job: DownloadJob) -> None:
        session = await self.http.get()
        async with session.get(job.url, allow_redirects=True) as response:
            response.raise_for_status()
            await asyncio.to_thread(job.target.parent.mkdir, parents=True, exist_ok=True)
            # Truncated once when the response starts, appended to afterwards.
            async with aiofiles.open(job.target, "wb") as f:
                async for chunk in response.content.iter_chunked(self.config.chunk_size):
                    await f.write(chunk)
                    job.bytes_written += len(chunk)

    async def _fail(self, job: DownloadJob, kind: TransferErrorKind, message: str) -> None:
        await asyncio.to_thread(_remove_partial, job.target)
        self._finish(job, JobResult(job.job_id, JobState.FAILED, kind, message))

    def _finish(self, job: DownloadJob, result: JobResult) -> None:
        job.state = result.state
        job.error = result.message or None
        self.results.put_nowait(result)

    def _apply(self, result: JobResult) -> None:
        job = self._jobs.pop(result.job_id, None)
        if job is None:
            return
        name = job.spec.name
        if result.state == JobState.OK:
            self.stats.files_downloaded += 1
            self.stats.bytes_downloaded += job.bytes_written
            self.report("success", f"Completed downloading {name}.")
        elif result.state == JobState.FAILED:
            self.ok = False
            self.stats.files_failed += 1
            self.report(
                "error",
                f"An error occurred while downloading {name} ({result.message}).",
            )
        else:
            self.stats.files_aborted += 1
            self.report("warning", f"Download of {name} was aborted.")

    async def wait_settled(self) -> bool:
        """
        Consumes job results until nothing is in flight and no result arrives within
        the settle delay. Returns True if every job of the round succeeded.
        """
        while True:
            while self._jobs:
                self._apply(await self.results.get())
            await asyncio.sleep(self.config.settle_delay)
            if not self._jobs and self.results.empty():
                return self.ok
            while not self.results.empty():
                self._apply(self.results.get_nowait())

    async def abort(self) -> int:
        """Cancels every in-flight job and waits for their partial files to go away."""
        tasks = [job.task for job in self._jobs.values() if job.task and not job.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        before = self.stats.files_aborted
        while not self.results.empty():
            self._apply(self.results.get_nowait())
        for job in list(self._jobs.values()):
            # Jobs cancelled before their coroutine started never post a result.
            await asyncio.to_thread(_remove_partial, job.target)
            self._apply(JobResult(job.job_id, JobState.ABORTED, TransferErrorKind.ABORTED))
        return self.stats.files_aborted - before


def _mark_executable(path: Path) -> None:
    mode = os.stat(path).st_mode
    os.chmod(path, stat.S_IMODE(mode) | EXECUTABLE_BITS)


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log.warning(f"Could not remove partial file {path}: {e}")
