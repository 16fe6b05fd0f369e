"""
Cancellation token for a batch run
"""

import threading


class BatchCancelled(Exception):
    """The batch run was cancelled."""


class CancellationToken:
    """
    One token per batch run, passed down to every screenshot unit.

    Thread-safe: the HTTP layer cancels from a request thread while the run
    lives on its own event loop in a worker thread.
    """

    def __init__(self, batch_id=None):
        self.batch_id = batch_id
        self._event = threading.Event()
        self.reason = None

    def cancel(self, reason='cancelled'):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise BatchCancelled(f"Batch {self.batch_id} {self.reason}")
