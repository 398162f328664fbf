"""
Intent store for the Controller.

In-memory store of static route intents and the per-node status each agent
reports for them. Thread-safe for concurrent access from API handlers.
"""

from threading import Lock
from typing import Dict, List, Optional

from models import NodeRouteStatus, RouteIntent


class IntentStore:
    """
    In-memory database of route intents and their per-node status.

    Attributes:
        _intents: Mapping of intent name to the current RouteIntent
        _status: Mapping of intent name to {hostname: NodeRouteStatus}
        _lock: Thread lock for safe concurrent access
    """

    def __init__(self):
        """Initialize an empty intent store."""
        self._intents: Dict[str, RouteIntent] = {}
        self._status: Dict[str, Dict[str, NodeRouteStatus]] = {}
        self._lock = Lock()

    def upsert(self, intent: RouteIntent) -> RouteIntent:
        """
        Create or update an intent.

        The stored generation is bumped whenever the route definition changes,
        and per-node status is reset because it describes the old definition.

        Args:
            intent: Intent as submitted by the user

        Returns:
            The stored intent
        """
        with self._lock:
            current = self._intents.get(intent.name)
            if current is None:
                stored = intent.model_copy(update={"generation": 1})
            elif (current.subnet, current.gateway, current.node) == \
                    (intent.subnet, intent.gateway, intent.node):
                return current
            else:
                stored = intent.model_copy(update={"generation": current.generation + 1})
                self._status.pop(intent.name, None)
            self._intents[intent.name] = stored
            return stored

    def get(self, name: str) -> Optional[RouteIntent]:
        with self._lock:
            return self._intents.get(name)

    def delete(self, name: str) -> Optional[RouteIntent]:
        """Remove an intent and its status. Returns the removed intent, if any."""
        with self._lock:
            self._status.pop(name, None)
            return self._intents.pop(name, None)

    def list_for_node(self, hostname: Optional[str] = None) -> List[RouteIntent]:
        """
        List intents, optionally only those targeting ``hostname``.

        Args:
            hostname: Node name, or None for every intent

        Returns:
            Intents sorted by name
        """
        with self._lock:
            intents = sorted(self._intents.values(), key=lambda i: i.name)
        if hostname is None:
            return intents
        return [intent for intent in intents if intent.targets(hostname)]

    def set_status(self, name: str, status: NodeRouteStatus) -> bool:
        """
        Record the status reported by one node.

        Returns:
            False if the intent does not exist
        """
        with self._lock:
            if name not in self._intents:
                return False
            self._status.setdefault(name, {})[status.hostname] = status
            return True

    def get_status(self, name: str) -> Dict[str, NodeRouteStatus]:
        with self._lock:
            return dict(self._status.get(name, {}))

    def clear_status(self, name: str, hostname: str) -> bool:
        """Drop one node's status entry. Returns True if one was removed."""
        with self._lock:
            return self._status.get(name, {}).pop(hostname, None) is not None

    def remove_node(self, hostname: str) -> List[str]:
        """
        Remove every status entry reported by ``hostname``.

        Used when a node leaves the cluster.

        Returns:
            Names of the intents whose status was pruned
        """
        pruned = []
        with self._lock:
            for name, statuses in self._status.items():
                if statuses.pop(hostname, None) is not None:
                    pruned.append(name)
        return pruned

    def clear(self) -> None:
        """
        Clear all data from the store.

        Useful for testing or resetting the system state.
        """
        with self._lock:
            self._intents.clear()
            self._status.clear()

    def get_intent_count(self) -> int:
        with self._lock:
            return len(self._intents)
