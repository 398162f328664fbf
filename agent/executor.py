"""
Executor module for Agent - handles kernel routing table access.

This module implements iproute2 command generation, routing table reading,
route installation/removal and error classification for the single kernel
routing table managed by the agent.
"""

import ipaddress
import json
import logging
import socket
import subprocess
from typing import Any, Dict, List, Optional

from agent.errors import InvalidRoute, KernelError, TransientKernelError
from models import KernelRoute, ResolvedRoute


logger = logging.getLogger(__name__)


# stderr fragments that mark an entry as absent (idempotent delete)
ABSENT_MARKERS = (
    "No such process",
    "No such file or directory",
)

# stderr fragments that mark malformed route parameters
INVALID_MARKERS = (
    "Invalid argument",
    "invalid gateway",
    "Nexthop has invalid gateway",
    "any valid prefix is expected",
    "inet address is expected",
    "Cannot find device",
    "Network is unreachable",
)

# stderr fragments that mark a failure unrelated to load or timing
FATAL_MARKERS = (
    "Operation not permitted",
    "Permission denied",
)

# stderr fragments of a listing for an address family the kernel lacks
UNSUPPORTED_FAMILY_MARKERS = (
    "Address family not supported",
)

# stderr fragments returned by `ip route get` when no path exists
UNREACHABLE_MARKERS = (
    "Network is unreachable",
    "No route to host",
    "unreachable",
)


def normalize_destination(dst: str, version: int = 4) -> str:
    """
    Convert an iproute2 destination field to CIDR notation.

    Args:
        dst: Destination as printed by iproute2 ("default", "10.0.0.1", "10.0.0.0/8")
        version: Address family of the listing "default" came from (4 or 6)

    Returns:
        Normalized CIDR string
    """
    if dst == "default":
        return "::/0" if version == 6 else "0.0.0.0/0"
    return str(ipaddress.ip_network(dst, strict=False))


class Executor:
    """
    Route executor for one Linux kernel routing table.

    Generates iproute2 commands scoped to the managed table and runs them with
    a bounded timeout. Failures are classified as transient (retryable) or
    permanent (invalid parameters, missing privileges).

    Attributes:
        table: Kernel routing table id managed by this executor
        timeout: Per-command timeout in seconds
        ip_binary: iproute2 binary to invoke (default: "ip")
    """

    def __init__(self, table: int = 254, timeout: float = 5.0, ip_binary: str = "ip"):
        """
        Initialize Executor.

        Args:
            table: Kernel routing table id (0-254)
            timeout: Per-command timeout in seconds (default: 5.0)
            ip_binary: iproute2 binary (default: "ip")
        """
        if not 0 <= table <= 254:
            raise ValueError(f"table must be between 0 and 254, got {table}")
        self.table = table
        self.timeout = timeout
        self.ip_binary = ip_binary

        logger.info(f"Executor initialized: table={table}, timeout={timeout}s")

    def _run(self, command: List[str]) -> subprocess.CompletedProcess:
        """
        Run an iproute2 command with the configured timeout.

        Raises:
            TransientKernelError: If the command timed out
            KernelError: If the iproute2 binary cannot be executed
        """
        logger.debug(f"Running: {' '.join(command)}")
        try:
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            raise TransientKernelError(
                f"Timeout after {self.timeout}s executing '{' '.join(command)}'"
            )
        except OSError as e:
            raise KernelError(f"Failed to execute {self.ip_binary}: {e}")

    def _classify_failure(self, command: List[str], result: subprocess.CompletedProcess) -> Exception:
        """Map a failed iproute2 invocation to the error taxonomy."""
        stderr = (result.stderr or "").strip()
        message = f"'{' '.join(command)}' failed ({result.returncode}): {stderr}"

        if any(marker in stderr for marker in FATAL_MARKERS):
            return KernelError(message)
        if any(marker in stderr for marker in INVALID_MARKERS):
            return InvalidRoute(message)
        return TransientKernelError(message)

    def _interface_name(self, ifindex: Optional[int]) -> Optional[str]:
        if ifindex is None:
            return None
        try:
            return socket.if_indextoname(ifindex)
        except OSError:
            raise InvalidRoute(f"Unknown interface index {ifindex}")

    def generate_route_replace_command(self, route: ResolvedRoute) -> List[str]:
        """
        Generate 'ip route replace' command for installing or updating a route.

        Args:
            route: Route to install; its gateway and interface are optional

        Returns:
            Command as list of strings
            Example: ["ip", "route", "replace", "192.168.1.0/24", "via", "10.0.0.1", "table", "100"]
        """
        command = [self.ip_binary, "route", "replace", route.destination]
        if route.gateway is not None:
            command += ["via", route.gateway]
        device = self._interface_name(route.ifindex)
        if device is not None:
            command += ["dev", device]
        command += ["table", str(self.table)]

        logger.debug(f"Generated replace command: {' '.join(command)}")
        return command

    def generate_route_del_command(self, destination: str) -> List[str]:
        """
        Generate 'ip route del' command for removing a route from the table.

        Args:
            destination: Destination network in CIDR notation

        Returns:
            Command as list of strings
            Example: ["ip", "route", "del", "192.168.1.0/24", "table", "100"]
        """
        command = [self.ip_binary, "route", "del", destination, "table", str(self.table)]

        logger.debug(f"Generated del command: {' '.join(command)}")
        return command

    def get_current_routes(self) -> Dict[str, KernelRoute]:
        """
        Read the managed routing table from the kernel.

        Executes 'ip -j -4 route show table <table>' and its '-6' counterpart
        and keeps unicast, single-path entries of both address families. A
        kernel without IPv6 contributes an empty IPv6 listing.

        Returns:
            Dictionary mapping destination CIDR to KernelRoute

        Raises:
            TransientKernelError: If the read timed out or failed transiently
            KernelError: If the read failed permanently
        """
        routes = {}
        for flag, version in (("-4", 4), ("-6", 6)):
            routes.update(self._read_family(flag, version))

        logger.debug(f"Current routes in table {self.table}: {list(routes)}")
        return routes

    def _read_family(self, flag: str, version: int) -> Dict[str, KernelRoute]:
        command = [self.ip_binary, "-j", flag, "route", "show", "table", str(self.table)]
        result = self._run(command)
        if result.returncode != 0:
            if version == 6 and any(m in (result.stderr or "") for m in UNSUPPORTED_FAMILY_MARKERS):
                logger.debug("IPv6 not available, skipping IPv6 read-back")
                return {}
            raise self._classify_failure(command, result)

        try:
            entries = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise TransientKernelError(f"Unparsable route listing: {e}")

        routes = {}
        for entry in entries:
            if entry.get("type", "unicast") != "unicast":
                continue
            if "nexthops" in entry or "dst" not in entry:
                continue
            try:
                destination = normalize_destination(entry["dst"], version)
            except ValueError:
                logger.debug(f"Skipping unparsable destination: {entry['dst']}")
                continue
            routes[destination] = KernelRoute(
                destination=destination,
                gateway=entry.get("gateway"),
                device=entry.get("dev")
            )
        return routes

    def replace_route(self, route: ResolvedRoute) -> None:
        """
        Install or update a route (never duplicates an entry).

        Raises:
            InvalidRoute: If the kernel rejects the route parameters
            TransientKernelError: On timeout or transient kernel failure
            KernelError: On permanent kernel failure
        """
        command = self.generate_route_replace_command(route)
        result = self._run(command)
        if result.returncode != 0:
            raise self._classify_failure(command, result)
        logger.info(f"Installed route {route.destination} via {route.gateway or 'link'} "
                    f"in table {self.table}")

    def delete_route(self, destination: str) -> bool:
        """
        Remove the entry for ``destination`` if present.

        Returns:
            True if an entry was removed, False if none existed

        Raises:
            TransientKernelError: On timeout or transient kernel failure
            KernelError: On permanent kernel failure
        """
        command = self.generate_route_del_command(destination)
        result = self._run(command)
        if result.returncode != 0:
            if any(marker in (result.stderr or "") for marker in ABSENT_MARKERS):
                logger.debug(f"Route {destination} already absent from table {self.table}")
                return False
            raise self._classify_failure(command, result)
        logger.info(f"Removed route {destination} from table {self.table}")
        return True

    def route_get(self, address: str) -> Optional[Dict[str, Any]]:
        """
        Ask the kernel which route it would use to reach ``address``.

        Args:
            address: Destination IP address

        Returns:
            The best-matching route as reported by 'ip -j route get', with an
            added "ifindex" key, or None if the destination is unreachable

        Raises:
            TransientKernelError: On timeout or transient kernel failure
        """
        command = [self.ip_binary, "-j", "route", "get", address]
        result = self._run(command)
        if result.returncode != 0:
            if any(marker in (result.stderr or "") for marker in UNREACHABLE_MARKERS):
                return None
            raise self._classify_failure(command, result)

        try:
            entries = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise TransientKernelError(f"Unparsable route lookup: {e}")

        if not entries:
            return None
        entry = dict(entries[0])
        if entry.get("type") in ("unreachable", "prohibit", "blackhole"):
            return None

        entry["ifindex"] = None
        if entry.get("dev"):
            try:
                entry["ifindex"] = socket.if_nametoindex(entry["dev"])
            except OSError:
                logger.debug(f"Interface {entry['dev']} vanished during lookup")
        return entry
