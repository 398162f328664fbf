"""
Reconciler - turns route intent life-cycle events into engine commands.

``plan_commands`` is the pure diff between an intent snapshot and the route
previously applied for it. ``Reconciler.reconcile`` submits the planned
commands, waits for their outcome and maps failures onto the intent status
and the watch mechanism's requeue contract.
"""

import logging
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Dict, List, Optional, Protocol

from agent.engine import RouteSyncEngine
from agent.errors import (
    EngineError,
    EngineNotRunning,
    InvalidRoute,
    KernelError,
    ProtectedSubnetViolation,
    TransientKernelError,
    UnreachableDestination,
)
from models import (
    AddRoute,
    DeleteRoute,
    IntentEvent,
    NodeRouteStatus,
    ReconcileResult,
    ResolvedRoute,
    RouteCommand,
    RouteIntent,
)


logger = logging.getLogger(__name__)


class StatusReporter(Protocol):
    """Sink for per-node intent status."""

    def report_status(self, intent_name: str, status: NodeRouteStatus) -> bool:
        ...

    def clear_status(self, intent_name: str, hostname: str) -> bool:
        ...


def candidate_route(intent: RouteIntent, table: int) -> ResolvedRoute:
    """Route implied by ``intent``; the gateway stays unresolved if not explicit."""
    return ResolvedRoute(destination=intent.subnet, gateway=intent.gateway, table=table)


def plan_commands(
    intent: RouteIntent,
    previous: Optional[ResolvedRoute],
    table: int,
    deleted: bool = False
) -> List[RouteCommand]:
    """
    Compute the commands that move the table from ``previous`` to ``intent``.

    Args:
        intent: Intent snapshot for this pass
        previous: Route last applied for this intent, if any
        table: Managed kernel table id
        deleted: Whether the intent was deleted (or no longer targets this node)

    Returns:
        Ordered list of commands; a stale entry is always removed before the
        new one is added. Nothing is retracted for an intent that was never
        applied.
    """
    route = candidate_route(intent, table)
    if deleted:
        return [DeleteRoute(route=previous)] if previous is not None else []

    commands: List[RouteCommand] = []
    if previous is not None and (
        previous.destination != route.destination or previous.gateway != route.gateway
    ):
        commands.append(DeleteRoute(route=previous))
    commands.append(AddRoute(route=route))
    return commands


class Reconciler:
    """
    Per-event reconciliation of route intents targeting the local node.

    Attributes:
        engine: Route synchronization engine receiving the commands
        hostname: Local node name
        table: Managed kernel table id
        status_reporter: Optional sink for intent status
        requeue_after: Delay before re-delivery after a transient failure
        command_timeout: Maximum seconds to wait for one command's outcome
    """

    def __init__(
        self,
        engine: RouteSyncEngine,
        hostname: str,
        table: int,
        status_reporter: Optional[StatusReporter] = None,
        requeue_after: float = 10.0,
        command_timeout: float = 60.0
    ):
        self.engine = engine
        self.hostname = hostname
        self.table = table
        self.status_reporter = status_reporter
        self.requeue_after = requeue_after
        self.command_timeout = command_timeout

        # intent name -> route the engine applied or may still apply (unresolved form)
        self._applied: Dict[str, ResolvedRoute] = {}
        self._lock = threading.Lock()

    def applied_route(self, name: str) -> Optional[ResolvedRoute]:
        with self._lock:
            return self._applied.get(name)

    def reconcile(self, event: IntentEvent) -> ReconcileResult:
        """
        Handle one intent life-cycle event.

        Args:
            event: Created, updated or deleted intent snapshot

        Returns:
            ReconcileResult asking for re-delivery after transient failures
        """
        intent = event.intent
        previous = self.applied_route(intent.name)
        deleted = event.kind == "deleted" or not intent.targets(self.hostname)

        commands = plan_commands(intent, previous, self.table, deleted=deleted)
        if not commands:
            if event.kind == "deleted":
                logger.info(f"Intent {intent.name} deleted, nothing applied on this node")
                if self.status_reporter is not None:
                    self.status_reporter.clear_status(intent.name, self.hostname)
            else:
                logger.debug(f"Ignoring intent {intent.name}: targets node {intent.node}")
            return ReconcileResult()

        logger.info(f"Reconciling {event.kind} intent {intent.name}: "
                    f"{', '.join(f'{c.op} {c.route.destination}' for c in commands)}")

        command = None
        try:
            installed = None
            for command in commands:
                installed = self._execute(command)
                if isinstance(command, DeleteRoute):
                    with self._lock:
                        self._applied.pop(intent.name, None)
        except EngineNotRunning as e:
            logger.warning(f"Intent {intent.name} deferred, requeue in {self.requeue_after}s: {e}")
            return ReconcileResult(requeue=True, requeue_after=self.requeue_after)
        except ProtectedSubnetViolation as e:
            logger.warning(f"Intent {intent.name} permanently rejected: {e}")
            self._report(intent, "rejected", error=str(e), permanent=True)
            return ReconcileResult()
        except UnreachableDestination as e:
            logger.error(f"Intent {intent.name} failed: {e}")
            self._report(intent, "failed", error=str(e))
            return ReconcileResult()
        except (InvalidRoute, KernelError) as e:
            logger.error(f"Intent {intent.name} failed: {e}")
            self._report(intent, "failed", error=str(e), permanent=True)
            return ReconcileResult()
        except TransientKernelError as e:
            logger.warning(f"Intent {intent.name} failed transiently, "
                           f"requeue in {self.requeue_after}s: {e}")
            if isinstance(command, AddRoute):
                # the engine may still install it; a later delete must retract it
                with self._lock:
                    self._applied[intent.name] = command.route
            self._report(intent, "pending", error=str(e))
            return ReconcileResult(requeue=True, requeue_after=self.requeue_after)
        except EngineError as e:
            logger.warning(f"Intent {intent.name} not reconciled: {e}")
            return ReconcileResult()

        if deleted:
            logger.info(f"Route for intent {intent.name} removed")
            if self.status_reporter is not None:
                self.status_reporter.clear_status(intent.name, self.hostname)
            return ReconcileResult()

        with self._lock:
            self._applied[intent.name] = candidate_route(intent, self.table)
        self._report(intent, "applied", gateway=installed.gateway if installed else None)
        return ReconcileResult()

    def _execute(self, command: RouteCommand) -> ResolvedRoute:
        future = self.engine.submit(command)
        try:
            return future.result(timeout=self.command_timeout)
        except FutureTimeoutError:
            raise TransientKernelError(
                f"{command.op} {command.route.destination} not applied "
                f"within {self.command_timeout}s"
            )

    def _report(
        self,
        intent: RouteIntent,
        state: str,
        gateway: Optional[str] = None,
        error: Optional[str] = None,
        permanent: bool = False
    ) -> None:
        if self.status_reporter is None:
            return
        status = NodeRouteStatus(
            hostname=self.hostname,
            state=state,
            destination=intent.subnet,
            gateway=gateway or intent.gateway,
            table=self.table,
            error=error,
            permanent=permanent
        )
        self.status_reporter.report_status(intent.name, status)
