"""
Shared fixtures: an in-memory kernel routing table and engine helpers.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, List, Optional

import pytest

from agent.engine import RouteSyncEngine
from agent.guard import ProtectedSubnetGuard
from models import KernelRoute, NodeRouteStatus


class FakeExecutor:
    """In-memory stand-in for the iproute2 executor of one table."""

    def __init__(self, table: int = 100):
        self.table = table
        self.routes: Dict[str, KernelRoute] = {}
        self.lookups: Dict[str, dict] = {}
        self.calls: List[tuple] = []
        # exceptions raised, in order, by the next mutating calls
        self.failures: List[Exception] = []
        self.lock = threading.Lock()

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    def replace_route(self, route):
        with self.lock:
            self.calls.append(("replace", route.destination, route.gateway))
            self._maybe_fail()
            self.routes[route.destination] = KernelRoute(
                destination=route.destination, gateway=route.gateway
            )

    def delete_route(self, destination):
        with self.lock:
            self.calls.append(("delete", destination))
            self._maybe_fail()
            return self.routes.pop(destination, None) is not None

    def get_current_routes(self):
        with self.lock:
            return dict(self.routes)

    def route_get(self, address):
        return self.lookups.get(address)

    def mutations(self, destination: Optional[str] = None) -> List[tuple]:
        with self.lock:
            return [c for c in self.calls if destination is None or c[1] == destination]


class RecordingReporter:
    """Status sink that keeps everything it is told."""

    def __init__(self):
        self.statuses: Dict[str, NodeRouteStatus] = {}
        self.cleared: List[str] = []

    def report_status(self, intent_name, status):
        self.statuses[intent_name] = status
        return True

    def clear_status(self, intent_name, hostname):
        self.cleared.append(intent_name)
        self.statuses.pop(intent_name, None)
        return True


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@contextmanager
def running(engine: RouteSyncEngine):
    """Run ``engine`` on a background thread for the duration of the block."""
    stop = threading.Event()
    thread = threading.Thread(target=engine.run, args=(stop,), daemon=True)
    thread.start()
    try:
        assert engine.wait_running(timeout=5)
        yield stop
    finally:
        stop.set()
        thread.join(timeout=5)


@pytest.fixture
def kernel():
    return FakeExecutor(table=100)


@pytest.fixture
def make_engine(kernel):
    """Factory for engines on the fake kernel; protected 10.0.0.0/8 by default."""
    def factory(protected=("10.0.0.0/8",), **kwargs):
        kwargs.setdefault("reconcile_interval", 3600)
        kwargs.setdefault("retry_attempts", 3)
        kwargs.setdefault("retry_backoff", [0.01])
        return RouteSyncEngine(kernel, ProtectedSubnetGuard(protected), **kwargs)
    return factory


@pytest.fixture
def engine(make_engine):
    """A running engine on the fake kernel."""
    engine = make_engine()
    with running(engine):
        yield engine


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def helpers():
    """Expose module helpers to test modules."""
    class Helpers:
        pass
    Helpers.wait_for = staticmethod(wait_for)
    Helpers.running = staticmethod(running)
    return Helpers
