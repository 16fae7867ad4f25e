"""Bounded parallel for-each with cooperative early stop."""

import asyncio
import logging
import os
import threading
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from cookbook_sessions.domain.errors import InvalidArgumentError, SessionNotFoundError
from cookbook_sessions.domain.sessions import Scope, Session
from cookbook_sessions.services.scopes import ScopeFactory
from cookbook_sessions.services.sessions import SessionManager

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class FanOutStatus(str, Enum):
    """Outcome an operation reports for its item."""

    CONTINUE = "continue"
    STOP_EARLY = "stop_early"


class StopSignal:
    """Shared early-stop flag, safe to set from any thread."""

    def __init__(self) -> None:
        self._requested = False
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def requested(self) -> bool:
        """Return True once a stop has been requested."""
        with self._lock:
            return self._requested

    def request(self) -> bool:
        """Request a stop; return True if this call was the first."""
        with self._lock:
            if self._requested:
                return False
            self._requested = True
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Invoke `callback` on stop, immediately if already requested."""
        with self._lock:
            if not self._requested:
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


class AtomicCounter:
    """Integer counter with atomic increment."""

    def __init__(self, value: int = 0) -> None:
        self._value = value
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        """Add one and return the new value."""
        with self._lock:
            self._value += 1
            return self._value


class ResultBag(Generic[T]):
    """Unordered collection that fan-out operations add results to."""

    def __init__(self) -> None:
        self._items: list[T] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def add(self, item: T) -> int:
        """Add an item and return the new size."""
        with self._lock:
            self._items.append(item)
            return len(self._items)

    def snapshot(self) -> list[T]:
        with self._lock:
            return list(self._items)


@dataclass
class FanOutResult:
    """Counts describing how a fan-out run ended."""

    started: int = 0
    completed: int = 0
    cancelled: int = 0
    skipped: int = 0
    stopped_early: bool = False


Operation = Callable[[Scope, T, StopSignal], Awaitable[FanOutStatus | None]]


@dataclass
class FanOutExecutor:
    """Runs one operation per item, each under its own child scope.

    A run-level child scope holds the session open from the first launch
    until every item has drained, even if the parent scope detaches.

    The executor never decides when to stop: operations request it through
    the shared `StopSignal` (or by returning `FanOutStatus.STOP_EARLY`).
    Once requested, no new item starts and in-flight items are cancelled.
    Early stop is not an error. Any other exception from an operation
    cancels the rest of the run and is re-raised after logging.
    """

    session_manager: SessionManager
    scope_factory: ScopeFactory
    default_parallelism: int = field(default_factory=lambda: os.cpu_count() or 1)

    async def parallel_for_each(  # noqa: PLR0913
        self,
        parent_scope: Scope,
        items: Iterable[T],
        operation: Operation,
        max_degree_of_parallelism: int | None = None,
        stop: StopSignal | None = None,
    ) -> FanOutResult:
        """Run `operation` over `items` with bounded concurrency."""
        if parent_scope is None:
            raise InvalidArgumentError("parent_scope cannot be None")
        limit = (
            self.default_parallelism
            if max_degree_of_parallelism is None
            else max_degree_of_parallelism
        )
        if limit < 1:
            raise InvalidArgumentError("max_degree_of_parallelism must be positive")

        pending = list(items)
        signal = stop or StopSignal()
        session = self._resolve_session(parent_scope)
        run_scope = self.scope_factory.create_scope(parent_scope)
        self.session_manager.add_scope_to_session(session, run_scope.id)
        result = FanOutResult()
        semaphore = asyncio.Semaphore(limit)
        in_flight: set[asyncio.Task[None]] = set()
        failures: list[BaseException] = []
        loop = asyncio.get_running_loop()

        def cancel_in_flight() -> None:
            for task in list(in_flight):
                task.cancel()

        def on_stop() -> None:
            loop.call_soon_threadsafe(cancel_in_flight)

        def on_done(task: asyncio.Task[None]) -> None:
            in_flight.discard(task)
            semaphore.release()
            if task.cancelled():
                result.cancelled += 1
                return
            error = task.exception()
            if error is not None:
                failures.append(error)
                cancel_in_flight()

        async def run(item: T) -> None:
            scope = self.scope_factory.create_scope(parent_scope)
            self.session_manager.add_scope_to_session(session, scope.id)
            try:
                status = await operation(scope, item, signal)
            finally:
                self.session_manager.remove_scope_from_session(scope.id)
            result.completed += 1
            if status is FanOutStatus.STOP_EARLY and signal.request():
                _logger.info("Fan-out stopped early by item %r", item)

        signal.add_callback(on_stop)
        try:
            for item in pending:
                if signal.requested or failures:
                    break
                await semaphore.acquire()
                if signal.requested or failures:
                    semaphore.release()
                    break
                task = asyncio.create_task(run(item))
                result.started += 1
                in_flight.add(task)
                task.add_done_callback(on_done)
            await _drain(in_flight)
        except asyncio.CancelledError:
            cancel_in_flight()
            await _drain(in_flight)
            raise
        finally:
            signal.remove_callback(on_stop)
            self.session_manager.remove_scope_from_session(run_scope.id)

        result.skipped = len(pending) - result.started
        result.stopped_early = signal.requested
        if failures:
            _logger.error("Error in parallel operation", exc_info=failures[0])
            raise failures[0]
        return result

    def _resolve_session(self, parent_scope: Scope) -> Session:
        if parent_scope.session_id is not None:
            try:
                return self.session_manager.get_session(parent_scope.session_id)
            except SessionNotFoundError:
                _logger.warning(
                    "Scope %s refers to missing Session %s",
                    parent_scope.id,
                    parent_scope.session_id,
                )
        session = self.session_manager.get_session_by_scope(parent_scope.id)
        parent_scope.session_id = session.id
        return session


async def _drain(tasks: set[asyncio.Task[None]]) -> None:
    while tasks:
        await asyncio.wait(list(tasks))
