"""
Route synchronization engine.

The engine is the only writer of its kernel routing table. Route commands
submitted from any thread are queued and applied one at a time, in
submission order, by the thread running ``RouteSyncEngine.run``. The same
thread periodically reads the table back and heals drift caused by
external changes.
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple, TypeVar

from agent.errors import (
    CommandCancelled,
    EngineError,
    EngineNotRunning,
    EngineStopped,
    InvalidRoute,
    ProtectedSubnetViolation,
    RetryExhausted,
    RouteError,
    TransientKernelError,
)
from agent.executor import Executor
from agent.guard import ProtectedSubnetGuard
from agent.resolver import GatewayResolver
from models import AddRoute, DeleteRoute, ResolvedRoute, RouteCommand


logger = logging.getLogger(__name__)

T = TypeVar("T")


class EngineState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


def describe(command: RouteCommand) -> str:
    return f"{command.op} {command.route.destination}"


class RouteSyncEngine:
    """
    Serialized owner of one kernel routing table.

    Commands are accepted only while ``run`` is executing; before that
    ``submit`` raises EngineNotRunning. After the stop event fires the engine
    is stopped for good: queued commands are cancelled and ``submit`` raises
    EngineStopped.

    Deletes only ever remove destinations this engine installed itself.

    Attributes:
        executor: Kernel access for the managed table
        guard: Protected subnet guard applied to every Add
        resolver: Gateway resolver used when a route has no explicit gateway
        reconcile_interval: Seconds between drift-healing ticks
        retry_attempts: Attempts per command for transient kernel errors
        retry_backoff: Backoff delays in seconds between attempts
    """

    # upper bound on how long the loop blocks before re-checking the stop event
    STOP_POLL_INTERVAL = 0.2

    def __init__(
        self,
        executor: Executor,
        guard: ProtectedSubnetGuard,
        resolver: Optional[GatewayResolver] = None,
        reconcile_interval: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff: Optional[List[float]] = None
    ):
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if reconcile_interval <= 0:
            raise ValueError("reconcile_interval must be positive")

        self.executor = executor
        self.table = executor.table
        self.guard = guard
        self.resolver = resolver or GatewayResolver(executor)
        self.reconcile_interval = reconcile_interval
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff or [1, 2, 4]

        self._queue: "queue.Queue[Tuple[RouteCommand, Future]]" = queue.Queue()
        self._lock = threading.Lock()
        self._state = EngineState.IDLE
        self._started = threading.Event()
        # last-known desired entries, keyed by destination
        self._desired: Dict[str, ResolvedRoute] = {}
        # destinations installed by this engine and not yet confirmed removed
        self._managed: Set[str] = set()

        logger.info(f"RouteSyncEngine initialized: table={self.table}, "
                    f"reconcile_interval={reconcile_interval}s, "
                    f"protected_subnets={len(guard)}")

    @property
    def state(self) -> EngineState:
        with self._lock:
            return self._state

    def desired_routes(self) -> Dict[str, ResolvedRoute]:
        """Snapshot of the routes the engine currently keeps installed."""
        with self._lock:
            return dict(self._desired)

    def wait_running(self, timeout: Optional[float] = None) -> bool:
        """Block until ``run`` has started; False on timeout."""
        return self._started.wait(timeout)

    def submit(self, command: RouteCommand) -> Future:
        """
        Enqueue a route command without waiting for it to be applied.

        Safe to call from any thread.

        Args:
            command: AddRoute or DeleteRoute

        Returns:
            Future resolving to the applied ResolvedRoute, or carrying the
            command's RouteError

        Raises:
            EngineNotRunning: If ``run`` has not started yet
            EngineStopped: If the engine has already stopped
        """
        future: Future = Future()
        with self._lock:
            if self._state is EngineState.IDLE:
                raise EngineNotRunning(f"cannot {describe(command)}: route engine not started")
            if self._state is EngineState.STOPPED:
                raise EngineStopped(f"cannot {describe(command)}: route engine has stopped")
            self._queue.put((command, future))
        logger.debug(f"Queued {describe(command)}")
        return future

    def run(self, stop_event: threading.Event) -> None:
        """
        Apply queued commands and run reconciliation ticks until stopped.

        Blocking; must be called exactly once per engine.

        Args:
            stop_event: Event that terminates the loop when set

        Raises:
            EngineError: If the engine was already started
        """
        with self._lock:
            if self._state is not EngineState.IDLE:
                raise EngineError(f"run() called on a {self._state.value} engine")
            self._state = EngineState.RUNNING
        self._started.set()

        logger.info(f"Route engine running on table {self.table}")
        next_tick = time.monotonic() + self.reconcile_interval

        try:
            while not stop_event.is_set():
                wait = min(max(next_tick - time.monotonic(), 0.0), self.STOP_POLL_INTERVAL)
                try:
                    command, future = self._queue.get(timeout=wait)
                except queue.Empty:
                    pass
                else:
                    if stop_event.is_set():
                        self._cancel(command, future)
                        break
                    self._process(command, future, stop_event)

                if not stop_event.is_set() and time.monotonic() >= next_tick:
                    self.reconcile_once()
                    next_tick = time.monotonic() + self.reconcile_interval
        finally:
            self._shutdown()

    def _process(self, command: RouteCommand, future: Future, stop_event: threading.Event) -> None:
        if not future.set_running_or_notify_cancel():
            logger.debug(f"Skipping {describe(command)}: cancelled by caller")
            return

        try:
            result = self._apply(command, stop_event)
        except ProtectedSubnetViolation as e:
            logger.warning(f"Rejected {describe(command)}: {e}")
            future.set_exception(e)
        except RouteError as e:
            logger.error(f"Failed to {describe(command)}: {e}")
            future.set_exception(e)
        except Exception as e:
            logger.error(f"Unexpected error applying {describe(command)}: {e}", exc_info=True)
            future.set_exception(e)
        else:
            future.set_result(result)

    def _apply(self, command: RouteCommand, stop_event: threading.Event) -> ResolvedRoute:
        route = command.route
        if route.table != self.table:
            raise InvalidRoute(
                f"route {route.destination} targets table {route.table}, "
                f"engine manages table {self.table}"
            )
        if isinstance(command, AddRoute):
            return self._add(route, stop_event)
        if isinstance(command, DeleteRoute):
            return self._delete(route, stop_event)
        raise InvalidRoute(f"unknown route command {command!r}")

    def _add(self, route: ResolvedRoute, stop_event: threading.Event) -> ResolvedRoute:
        protected = self.guard.matching(route.destination)
        if protected is not None:
            raise ProtectedSubnetViolation(route.destination, str(protected))

        def install() -> ResolvedRoute:
            target = route
            if target.gateway is None:
                resolved = self.resolver.resolve(route.destination)
                target = route.model_copy(
                    update={"gateway": resolved.gateway, "ifindex": resolved.ifindex}
                )
            self.executor.replace_route(target)
            return target

        installed = self._retry_with_backoff(install, f"add {route.destination}", stop_event)
        with self._lock:
            self._desired[installed.destination] = installed
            self._managed.add(installed.destination)
        return installed

    def _delete(self, route: ResolvedRoute, stop_event: threading.Event) -> ResolvedRoute:
        destination = route.destination
        with self._lock:
            self._desired.pop(destination, None)
            managed = destination in self._managed

        if not managed:
            logger.info(f"Not deleting {destination}: not installed by this agent")
            return route

        self._retry_with_backoff(
            lambda: self.executor.delete_route(destination),
            f"delete {destination}",
            stop_event
        )
        with self._lock:
            self._managed.discard(destination)
        return route

    def _retry_with_backoff(
        self,
        operation: Callable[[], T],
        operation_name: str,
        stop_event: threading.Event
    ) -> T:
        """
        Execute a kernel operation, retrying transient failures with backoff.

        Non-transient errors propagate immediately. Backoff sleeps are
        interrupted by the stop event.

        Raises:
            RetryExhausted: If every attempt failed transiently
            CommandCancelled: If the engine was stopped during backoff
        """
        last_exception: Optional[TransientKernelError] = None

        for attempt in range(self.retry_attempts):
            try:
                return operation()
            except TransientKernelError as e:
                last_exception = e
                logger.warning(f"{operation_name} failed transiently "
                               f"(attempt {attempt + 1}/{self.retry_attempts}): {e}")

            if attempt < self.retry_attempts - 1:
                delay = self.retry_backoff[min(attempt, len(self.retry_backoff) - 1)]
                logger.debug(f"Backing off for {delay}s before retry")
                if stop_event.wait(delay):
                    raise CommandCancelled(f"{operation_name} cancelled during backoff")

        raise RetryExhausted(
            f"{operation_name} failed after {self.retry_attempts} attempts: {last_exception}"
        )

    def reconcile_once(self) -> Tuple[int, int]:
        """
        Compare the kernel table with the desired routes and heal drift.

        Re-installs desired routes that are missing or point to another
        gateway, and removes entries this engine installed but no longer
        desires. Only the engine loop calls this while the engine runs.

        Returns:
            Tuple of (routes_restored, routes_removed)
        """
        with self._lock:
            desired = dict(self._desired)
            managed = set(self._managed)

        try:
            observed = self.executor.get_current_routes()
        except RouteError as e:
            logger.warning(f"Reconciliation skipped, cannot read table {self.table}: {e}")
            return 0, 0

        restored = 0
        for destination, route in desired.items():
            current = observed.get(destination)
            if current is not None and current.gateway == route.gateway:
                continue
            found = "nothing" if current is None else f"via {current.gateway or 'link'}"
            logger.warning(f"Drift on {destination}: expected via {route.gateway or 'link'}, "
                           f"found {found}")
            try:
                self.executor.replace_route(route)
                restored += 1
            except RouteError as e:
                logger.error(f"Failed to restore {destination}: {e}")

        removed = 0
        for destination in managed - set(desired):
            if destination in observed:
                try:
                    self.executor.delete_route(destination)
                    removed += 1
                except RouteError as e:
                    logger.error(f"Failed to remove stale route {destination}: {e}")
                    continue
            with self._lock:
                self._managed.discard(destination)

        if restored or removed:
            logger.info(f"Reconciliation complete: {restored} restored, {removed} removed")
        else:
            logger.debug("Reconciliation complete: table in sync")
        return restored, removed

    def _cancel(self, command: RouteCommand, future: Future) -> None:
        if future.set_running_or_notify_cancel():
            future.set_exception(CommandCancelled(f"{describe(command)} cancelled: engine stopped"))

    def _shutdown(self) -> None:
        with self._lock:
            self._state = EngineState.STOPPED

        cancelled = 0
        while True:
            try:
                command, future = self._queue.get_nowait()
            except queue.Empty:
                break
            self._cancel(command, future)
            cancelled += 1

        logger.info(f"Route engine stopped ({cancelled} queued commands cancelled)")
