"""
Agent module for the Static Route Agent.
Keeps one kernel routing table in sync with the route intents of its node.
"""

__version__ = "1.0.0"

from agent.engine import EngineState, RouteSyncEngine
from agent.executor import Executor
from agent.guard import ProtectedSubnetGuard
from agent.reconciler import Reconciler, plan_commands
from agent.resolver import GatewayResolver
from agent.client import ControllerClient
from agent.watcher import IntentWatcher

__all__ = [
    'EngineState',
    'RouteSyncEngine',
    'Executor',
    'ProtectedSubnetGuard',
    'Reconciler',
    'plan_commands',
    'GatewayResolver',
    'ControllerClient',
    'IntentWatcher',
]
