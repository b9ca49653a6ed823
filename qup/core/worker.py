"""
The single background slot a session uses for tree hashing and tree copying.
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from qup.exceptions import OperationCancelledError
from qup.utils.cancellation import CancellationToken

log = logging.getLogger(__name__)


class TaskKind(Enum):
    DIFF = "diff"
    COPY = "copy"


class BackgroundWorker:
    """
    Runs one blocking function at a time in a thread. The function receives a
    `CancellationToken`; `cancel_and_wait` sets it and awaits the thread's return.
    """

    def __init__(self) -> None:
        self.kind: TaskKind | None = None
        self._task: asyncio.Task | None = None
        self._token: CancellationToken | None = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def copying(self) -> bool:
        return self.busy and self.kind == TaskKind.COPY

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def submit(
        self, kind: TaskKind, func: Callable[[CancellationToken], Any]
    ) -> asyncio.Task:
        if self.busy:
            raise RuntimeError(f"A {self.kind.value} task is already running.")
        token = CancellationToken()
        self.kind = kind
        self._token = token
        self._task = asyncio.create_task(
            asyncio.to_thread(func, token), name=f"qup-{kind.value}"
        )
        return self._task

    async def cancel_and_wait(self) -> None:
        """
        Requests cancellation and waits until the thread has observed it. The wait is
        bounded only by how often the function checks its token.
        """
        task, token = self._task, self._token
        if task is None or task.done():
            return
        if token:
            token.cancel()
        # The thread cannot be interrupted; shield so the wait always completes.
        try:
            await asyncio.shield(task)
        except OperationCancelledError:
            log.debug(f"Background {self.kind.value} task observed cancellation.")
        except Exception as e:
            log.debug(f"Background {self.kind.value} task ended with {e!r}.")
