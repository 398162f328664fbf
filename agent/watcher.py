"""
Polling intent watcher.

Periodically fetches the intents targeting the local node, turns the
differences against the previous poll into created/updated/deleted events,
and hands them to the Reconciler. Events whose reconciliation asks for a
requeue are re-delivered once their backoff has elapsed.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

from models import IntentEvent, ReconcileResult, RouteIntent


logger = logging.getLogger(__name__)


def diff_intents(
    known: Dict[str, RouteIntent],
    desired: Dict[str, RouteIntent]
) -> List[IntentEvent]:
    """
    Compute life-cycle events between two intent snapshots.

    Args:
        known: Intents seen on the previous poll, keyed by name
        desired: Intents seen now, keyed by name

    Returns:
        Events for created, updated and deleted intents
    """
    events = []
    for name, intent in desired.items():
        previous = known.get(name)
        if previous is None:
            events.append(IntentEvent(kind="created", intent=intent))
        elif previous != intent:
            events.append(IntentEvent(kind="updated", intent=intent))
    for name in known.keys() - desired.keys():
        events.append(IntentEvent(kind="deleted", intent=known[name]))
    return events


class IntentWatcher(threading.Thread):
    """
    Watch loop feeding intent events to a reconcile callback.

    Events of one poll are reconciled in parallel, at most one per intent.

    Attributes:
        fetch: Callable returning the current intents, or None on failure
        reconcile: Callable handling one IntentEvent
        interval: Poll interval in seconds
        stop_event: Event that terminates the loop
        workers: Maximum number of concurrent reconciliations
    """

    def __init__(
        self,
        fetch: Callable[[], Optional[List[RouteIntent]]],
        reconcile: Callable[[IntentEvent], ReconcileResult],
        interval: float,
        stop_event: threading.Event,
        workers: int = 4
    ):
        super().__init__(name="IntentWatcher", daemon=True)
        self._fetch = fetch
        self._reconcile = reconcile
        self._interval = interval
        self._stop_event = stop_event
        self._workers = workers
        self._state: Dict[str, RouteIntent] = {}
        # intent name -> (monotonic due time, event to re-deliver)
        self._requeue: Dict[str, Tuple[float, IntentEvent]] = {}

    def run(self) -> None:
        logger.info(f"Intent watcher started (interval={self._interval}s)")
        with ThreadPoolExecutor(max_workers=self._workers,
                                thread_name_prefix="reconcile") as pool:
            while not self._stop_event.is_set():
                try:
                    self.poll(pool)
                except Exception as e:
                    logger.error(f"Error in watch loop: {e}", exc_info=True)
                self._stop_event.wait(self._interval)
        logger.info("Intent watcher stopped")

    def poll(self, pool: Optional[ThreadPoolExecutor] = None) -> List[IntentEvent]:
        """
        Run one watch cycle.

        Args:
            pool: Executor for parallel reconciliation; events run inline if None

        Returns:
            Events delivered during this cycle
        """
        intents = self._fetch()
        if intents is None:
            logger.warning("Intent source unavailable, keeping current routes")
            return []

        desired = {intent.name: intent for intent in intents}
        events = {event.intent.name: event for event in diff_intents(self._state, desired)}
        self._state = desired

        now = time.monotonic()
        for name, (due, event) in list(self._requeue.items()):
            if name in events:
                del self._requeue[name]
            elif due <= now:
                del self._requeue[name]
                current = desired.get(name)
                if current is not None:
                    events[name] = IntentEvent(kind="updated", intent=current)
                elif event.kind == "deleted":
                    events[name] = event

        if not events:
            return []

        logger.debug(f"Delivering {len(events)} intent events")
        delivered = list(events.values())
        if pool is None:
            results = [self._deliver(event) for event in delivered]
        else:
            results = list(pool.map(self._deliver, delivered))

        for event, result in zip(delivered, results):
            if result is not None and result.requeue:
                due = time.monotonic() + (result.requeue_after or 0.0)
                self._requeue[event.intent.name] = (due, event)
        return delivered

    def _deliver(self, event: IntentEvent) -> Optional[ReconcileResult]:
        try:
            return self._reconcile(event)
        except Exception as e:
            logger.error(f"Reconciliation of {event.intent.name} failed: {e}", exc_info=True)
            return ReconcileResult(requeue=True, requeue_after=self._interval)
