"""Unit tests for the background worker slot."""

import asyncio
import threading

import pytest

from qup.core.worker import BackgroundWorker, TaskKind


@pytest.mark.asyncio
async def test_submit_runs_in_a_thread():
    worker = BackgroundWorker()
    main_thread = threading.get_ident()

    result = await worker.submit(TaskKind.DIFF, lambda token: threading.get_ident())

    assert result != main_thread
    assert not worker.busy


@pytest.mark.asyncio
async def test_only_one_task_at_a_time():
    worker = BackgroundWorker()
    gate = threading.Event()
    task = worker.submit(TaskKind.COPY, lambda token: gate.wait(5))

    assert worker.busy
    assert worker.copying
    with pytest.raises(RuntimeError):
        worker.submit(TaskKind.DIFF, lambda token: None)

    gate.set()
    await task
    assert not worker.copying


@pytest.mark.asyncio
async def test_cancel_and_wait_sets_the_token_and_waits():
    worker = BackgroundWorker()
    started = threading.Event()

    def job(token):
        started.set()
        while True:
            token.raise_if_cancelled()
            threading.Event().wait(0.01)

    task = worker.submit(TaskKind.DIFF, job)
    await asyncio.to_thread(started.wait, 5)

    await worker.cancel_and_wait()

    assert task.done()
    assert not worker.busy


@pytest.mark.asyncio
async def test_cancel_and_wait_when_idle_is_a_no_op():
    await BackgroundWorker().cancel_and_wait()
