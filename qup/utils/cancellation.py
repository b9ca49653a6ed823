"""
A cancellation token shared between the control loop and a background thread.
"""

import threading

from qup.exceptions import OperationCancelledError


class CancellationToken:
    """
    Set from the control loop, polled by the worker once per visited file.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("The operation was interrupted.")
