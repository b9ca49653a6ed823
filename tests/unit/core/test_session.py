"""Unit tests for the session state machine.

These tests run whole rounds against a local HTTP server and real temporary
directories. Slow copies and stalled downloads are used to hold the session in a
busy state while the control surface is exercised.
"""

import asyncio
import os
import shutil
import threading
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio

from qup.core.events import DirectoryStatus, FilesDiffered, LogLine, SessionState, StateChanged
from qup.core.session import Session
from qup.exceptions import SessionBusyError, SessionValidationError
from qup.fs.sync import WRAPPER_MARKER, launcher_stanza
from qup.models.config import END_OF_FILE_MARKER, SessionParameters

WRAPPER = f"#!/bin/sh\n{WRAPPER_MARKER}\necho 'development build'\n"


def drain(session):
    events = []
    while not session.events.empty():
        events.append(session.events.get_nowait())
    return events


def states(events):
    return [e.current for e in events if isinstance(e, StateChanged)]


async def wait_for(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time.")
        await asyncio.sleep(0.01)


@pytest.fixture
def product_server(file_server, sample_manifest):
    manifest = sample_manifest.format(base=file_server.url("files"))
    file_server.files.update(
        {
            "qup.txt": manifest.encode(),
            "files/readme.txt": b"Read me.\n",
            "files/tool": b"#!/bin/sh\necho tool\n",
            "files/tool.sh": WRAPPER.encode(),
            "files/helper.so": b"\x7fELF",
        }
    )
    return file_server


@pytest.fixture
def parameters(product_server, tmp_path):
    return SessionParameters(
        product="tool",
        manifest_url=product_server.url("qup.txt"),
        destination=str(tmp_path / "installed"),
        platform="Debian 12 AMD64",
    )


@pytest_asyncio.fixture
async def session(config, parameters):
    session = Session(config, parameters)
    try:
        yield session
    finally:
        await session.close()


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field,value",
        [
            ("product", ""),
            ("destination", ""),
            ("manifest_url", "ftp://example.com/qup.txt"),
            ("manifest_url", "not a url"),
            ("manifest_url", "https:///qup.txt"),
        ],
    )
    async def test_start_is_rejected(self, session, parameters, field, value):
        bad = parameters.model_copy(update={field: value})

        with pytest.raises(SessionValidationError):
            session.start(bad)

        assert session.state == SessionState.IDLE
        events = drain(session)
        assert any(isinstance(e, LogLine) and e.level == "error" for e in events)
        assert states(events) == []

    @pytest.mark.asyncio
    async def test_install_without_staged_files_is_rejected(self, session):
        with pytest.raises(SessionValidationError):
            session.install()
        assert session.state == SessionState.IDLE


class TestRound:
    @pytest.mark.asyncio
    async def test_full_round(self, session):
        await session.start()
        await session.settle()

        assert session.state == SessionState.READY_TO_SYNC
        staging = session.staging_dir
        assert (staging / "qup.txt").is_file()
        assert (staging / "docs" / "readme.txt").read_bytes() == b"Read me.\n"
        assert os.access(staging / "tool", os.X_OK)
        assert os.access(staging / "tool.sh", os.X_OK)
        assert not (staging / "helper.dll").exists()
        assert session.stats.files_downloaded == 4

        events = drain(session)
        assert states(events) == [
            SessionState.FETCHING_MANIFEST,
            SessionState.PARSING,
            SessionState.DOWNLOADING,
            SessionState.READY_TO_SYNC,
        ]
        diffs = [e for e in events if isinstance(e, FilesDiffered)]
        assert len(diffs) == 1
        assert all(not record.in_sync for record in diffs[0].records)

    @pytest.mark.asyncio
    async def test_install_after_round(self, session, tmp_path):
        await session.start()
        await session.settle()
        drain(session)

        report = await session.install()
        await session.settle()

        assert report.ok
        assert session.state == SessionState.IDLE
        staging, installed = session.staging_dir, tmp_path / "installed"
        for name in ("tool", "tool.sh", "helper.so", "docs/readme.txt"):
            assert (installed / name).read_bytes() == (staging / name).read_bytes()
            assert (installed / name).stat().st_mode & 0o777 == (
                staging / name
            ).stat().st_mode & 0o777
        assert "".join(launcher_stanza(installed, "tool")) in (installed / "tool.sh").read_text()
        assert session.last_diff is not None
        assert session.last_diff.out_of_sync == []

        events = drain(session)
        assert states(events) == [SessionState.INSTALLING, SessionState.IDLE]
        assert len([e for e in events if isinstance(e, FilesDiffered)]) == 1

    @pytest.mark.asyncio
    async def test_unchanged_tree_is_not_reported_again(self, session):
        await session.start()
        await session.settle()
        drain(session)

        result = await session.refresh()

        assert result is not None
        assert result.changed is False
        assert not [e for e in drain(session) if isinstance(e, FilesDiffered)]

    @pytest.mark.asyncio
    async def test_auto_install(self, session, parameters, tmp_path):
        await session.start(parameters.model_copy(update={"auto_install": True}))
        await session.settle()

        assert session.state == SessionState.IDLE
        assert session.last_sync is not None and session.last_sync.ok
        assert (tmp_path / "installed" / "tool").is_file()
        assert session.last_diff is not None and session.last_diff.out_of_sync == []
        assert SessionState.INSTALLING in states(drain(session))

    @pytest.mark.asyncio
    async def test_missing_end_of_file_marker(self, session, product_server):
        product_server.files["qup.txt"] = b"[General]\nfile=readme.txt\n"

        await session.start()
        await session.settle()

        assert session.state == SessionState.ERROR
        assert "ended without" in session.last_error

    @pytest.mark.asyncio
    async def test_failed_file_fails_the_round(self, session, product_server):
        product_server.files["qup.txt"] = (
            f"[General]\nfile=missing.bin\nurl={product_server.url('files')}\n"
            f"{END_OF_FILE_MARKER}\n"
        ).encode()

        await session.start()
        await session.settle()

        assert session.state == SessionState.ERROR
        assert session.stats.files_failed == 1
        assert not (session.staging_dir / "missing.bin").exists()

    @pytest.mark.asyncio
    async def test_restart_from_error(self, session, product_server, sample_manifest):
        product_server.files["qup.txt"] = b"truncated"
        await session.start()
        await session.settle()
        assert session.state == SessionState.ERROR

        product_server.files["qup.txt"] = sample_manifest.format(
            base=product_server.url("files")
        ).encode()
        await session.start()
        await session.settle()
        assert session.state == SessionState.READY_TO_SYNC
        assert session.last_error is None


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_requests_rejected_while_copying(self, session):
        await session.start()
        await session.settle()
        gate = threading.Event()
        real_copy = shutil.copyfile

        def slow_copy(source, target, *args, **kwargs):
            gate.wait(5)
            return real_copy(source, target, *args, **kwargs)

        with patch("qup.fs.sync.shutil.copyfile", side_effect=slow_copy):
            task = session.install()
            await wait_for(lambda: session.worker.copying)

            with pytest.raises(SessionBusyError):
                session.start()
            with pytest.raises(SessionBusyError):
                session.install()
            assert session.refresh() is None
            assert session.is_active()

            gate.set()
            report = await task

        assert report.ok
        await session.settle()
        assert session.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_interrupt_during_download(self, session, product_server):
        product_server.files["qup.txt"] = (
            f"[General]\nfile=readme.txt\nurl={product_server.url('files')}\n"
            f"[General]\nfile=big.bin\nurl={product_server.url('slow')}\n"
            f"{END_OF_FILE_MARKER}\n"
        ).encode()
        partial = session.staging_dir / "big.bin"

        task = session.start()
        await wait_for(lambda: session.state == SessionState.DOWNLOADING and partial.exists())
        with pytest.raises(SessionBusyError):
            session.start()

        await session.interrupt()

        assert task.done()
        assert session.state == SessionState.IDLE
        assert not partial.exists()
        assert session.stats.files_aborted == 1
        assert not session.is_active()
        assert states(drain(session))[-2:] == [SessionState.CANCELLED, SessionState.IDLE]

    @pytest.mark.asyncio
    async def test_interrupt_during_install(self, session, tmp_path):
        await session.start()
        await session.settle()
        drain(session)
        gate = threading.Event()
        real_copy = shutil.copyfile

        def slow_copy(source, target, *args, **kwargs):
            gate.wait(5)
            return real_copy(source, target, *args, **kwargs)

        with patch("qup.fs.sync.shutil.copyfile", side_effect=slow_copy):
            task = session.install()
            await wait_for(lambda: session.worker.copying)

            interrupting = asyncio.create_task(session.interrupt())
            await wait_for(lambda: session.state == SessionState.CANCELLED)
            assert not interrupting.done()

            gate.set()
            await interrupting

        assert task.done()
        assert not session.worker.busy
        assert session.state == SessionState.IDLE
        assert session.last_sync is not None and session.last_sync.cancelled
        assert len(session.last_sync.copied) < 4
        assert not session.is_active()
        assert states(drain(session))[-2:] == [SessionState.CANCELLED, SessionState.IDLE]

    @pytest.mark.asyncio
    async def test_interrupt_when_idle_does_nothing(self, session):
        await session.interrupt()

        assert session.state == SessionState.IDLE
        assert drain(session) == []


class TestLaunchAndWatch:
    @pytest.mark.asyncio
    async def test_launch_reports_missing_program(self, session):
        assert session.launch() is False
        assert drain(session)[-1].level == "error"

    @pytest.mark.asyncio
    async def test_launch_installed_program(self, session, tmp_path):
        installed = tmp_path / "installed"
        installed.mkdir()
        (installed / "tool").write_text("#!/bin/sh\n")

        with patch("qup.fs.launcher.subprocess.Popen", return_value=MagicMock(pid=321)) as popen:
            assert session.launch() is True

        assert popen.call_args.args[0] == [str(installed / "tool")]
        assert popen.call_args.kwargs["cwd"] == str(installed)

    @pytest.mark.asyncio
    async def test_watch_reports_directory_status(self, session, tmp_path):
        (tmp_path / "installed").mkdir()

        session.watch()
        await wait_for(lambda: not session.events.empty())
        await session.unwatch()

        event = session.events.get_nowait()
        assert isinstance(event, DirectoryStatus)
        assert event.writable is True
