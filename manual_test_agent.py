#!/usr/bin/env python3
"""
Manual test script for Agent kernel access.

This script reads a routing table and resolves gateways for a few
destinations without modifying anything, so it runs without root.

Usage:
    python manual_test_agent.py [table] [destination ...]
"""

import os
import sys
import logging

from agent.errors import RouteError
from agent.executor import Executor
from agent.guard import ProtectedSubnetGuard
from agent.resolver import GatewayResolver
from config.parser import collect_protected_subnets

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def inspect_routing(table, destinations):
    """
    Show the contents of ``table`` and how each destination would be routed.

    Tests:
    1. Reading the table back through 'ip -j route show'
    2. Gateway resolution through 'ip -j route get'
    3. Protected subnet matching from PROTECTED_SUBNET_* variables
    """
    print("=" * 60)
    print(f"Agent Kernel Access Manual Test (table {table})")
    print("=" * 60)
    print()

    executor = Executor(table=table, timeout=2.0)
    resolver = GatewayResolver(executor)
    guard = ProtectedSubnetGuard(collect_protected_subnets(os.environ))

    routes = executor.get_current_routes()
    print(f"--- {len(routes)} routes in table {table} ---")
    for destination, route in sorted(routes.items()):
        print(f"  {destination:<20} via {route.gateway or 'link':<16} dev {route.device or '-'}")
    print()

    print("--- Gateway resolution ---")
    resolved_count = 0
    for destination in destinations:
        protected = guard.matching(destination)
        if protected is not None:
            print(f"✗ {destination}: overlaps protected subnet {protected}")
            continue
        try:
            resolved = resolver.resolve(destination)
        except RouteError as e:
            print(f"✗ {destination}: {e}")
            continue
        resolved_count += 1
        print(f"✓ {destination}: gateway={resolved.gateway or 'on-link'}, ifindex={resolved.ifindex}")

    print()
    print(f"Result: {resolved_count}/{len(destinations)} destinations resolvable")
    return resolved_count > 0


if __name__ == "__main__":
    table = int(sys.argv[1]) if len(sys.argv) > 1 else 254
    destinations = sys.argv[2:] or ["8.8.8.0/24", "127.0.0.0/8"]
    try:
        success = inspect_routing(table, destinations)
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\n\nTest interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Test failed with error: {e}", exc_info=True)
        sys.exit(1)
