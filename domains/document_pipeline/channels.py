"""
Concurrency primitives for the pipeline.

- CancelScope: cancellation token carrying the first cause, with child scopes
- WaitGroup: counter of running worker threads, waited on at shutdown
- Channel: unbuffered rendezvous channel whose send/receive race cancellation
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, List, Optional

from loguru import logger

from domains.document_pipeline.errors import Cancelled

# How often blocked channel operations re-check their cancellation scope
POLL_INTERVAL = 0.05

_EMPTY = object()


class CancelScope:
    """Cooperative cancellation shared by every thread of a pipeline."""

    def __init__(self, parent: Optional["CancelScope"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._cause: Optional[BaseException] = None
        self._children: List[CancelScope] = []
        self._callbacks: List[Callable[[Optional[BaseException]], None]] = []

        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: "CancelScope") -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
            cause = self._cause
        child.cancel(cause)

    def child(self) -> "CancelScope":
        """Create a scope cancelled whenever this one is."""
        return CancelScope(parent=self)

    def cancel(self, cause: Optional[BaseException] = None) -> bool:
        """
        Cancel the scope. The first cause wins.

        Returns:
            True if this call cancelled the scope, False if it already was
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._cause = cause
            self._event.set()
            children = list(self._children)
            callbacks = list(self._callbacks)

        for child in children:
            child.cancel(cause)
        for callback in callbacks:
            try:
                callback(cause)
            except Exception as e:
                logger.error(f"Cancellation callback failed: {e}")
        return True

    def on_cancel(self, callback: Callable[[Optional[BaseException]], None]) -> None:
        """Run ``callback(cause)`` once the scope is cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
            cause = self._cause
        callback(cause)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cause(self) -> Optional[BaseException]:
        return self._cause

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; True if the scope is cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self._cause)


class WaitGroup:
    """Counts running workers so shutdown can wait for all of them."""

    def __init__(self):
        self._cond = threading.Condition()
        self._count = 0

    def add(self, delta: int = 1) -> None:
        with self._cond:
            self._count += delta
            if self._count < 0:
                raise ValueError("WaitGroup counter went negative")
            if self._count == 0:
                self._cond.notify_all()

    def done(self) -> None:
        self.add(-1)

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the counter to reach zero; False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout)

    def go(self, target: Callable[..., Any], *args: Any, name: Optional[str] = None) -> threading.Thread:
        """Run ``target(*args)`` on a new daemon thread counted by this group."""
        self.add(1)

        def run():
            try:
                target(*args)
            except Exception as e:
                logger.exception(f"Worker {threading.current_thread().name} failed: {e}")
            finally:
                self.done()

        thread = threading.Thread(target=run, name=name, daemon=True)
        try:
            thread.start()
        except RuntimeError:
            self.done()
            raise
        return thread


class Channel:
    """
    Unbuffered channel: ``send`` returns only once a receiver has taken the item.

    Both operations block until the peer arrives or the given scope is
    cancelled, in which case they raise Cancelled. A cancelled send retracts
    its item if no receiver took it.
    """

    def __init__(self, name: str = "channel"):
        self.name = name
        self._cond = threading.Condition()
        self._item: Any = _EMPTY
        self._put_seq = 0
        self._taken_seq = 0

    def send(self, item: Any, scope: Optional[CancelScope] = None) -> None:
        with self._cond:
            # wait for any other sender's pending item to be taken
            while self._item is not _EMPTY:
                self._check(scope)
                self._cond.wait(POLL_INTERVAL)

            self._check(scope)
            self._item = item
            self._put_seq += 1
            ticket = self._put_seq
            self._cond.notify_all()

            while self._taken_seq < ticket:
                if scope is not None and scope.cancelled:
                    # still in the slot, nobody took it
                    self._item = _EMPTY
                    self._put_seq -= 1
                    self._cond.notify_all()
                    raise Cancelled(scope.cause)
                self._cond.wait(POLL_INTERVAL)

    def receive(self, scope: Optional[CancelScope] = None, timeout: Optional[float] = None) -> Any:
        """
        Take the next item.

        Raises:
            Cancelled: If the scope is cancelled before an item arrives
            TimeoutError: If ``timeout`` elapses first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._item is _EMPTY:
                self._check(scope)
                wait_for = POLL_INTERVAL
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutError(f"Nothing received on {self.name} within {timeout}s")
                    wait_for = min(wait_for, remaining)
                self._cond.wait(wait_for)

            item = self._item
            self._item = _EMPTY
            self._taken_seq = self._put_seq
            self._cond.notify_all()
            return item

    @staticmethod
    def _check(scope: Optional[CancelScope]) -> None:
        if scope is not None:
            scope.raise_if_cancelled()

    def __repr__(self) -> str:
        return f"Channel({self.name!r})"
