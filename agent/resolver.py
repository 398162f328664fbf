"""
Gateway resolution for routes without an explicit next hop.
"""

import ipaddress
import logging
from typing import NamedTuple, Optional

from agent.errors import UnreachableDestination
from agent.executor import Executor


logger = logging.getLogger(__name__)


class ResolvedGateway(NamedTuple):
    gateway: Optional[str]
    ifindex: Optional[int]


class GatewayResolver:
    """
    Looks up the next hop the kernel currently uses towards a destination.

    The lookup is bounded by the executor's command timeout; a timeout
    surfaces as TransientKernelError.
    """

    def __init__(self, executor: Executor):
        self.executor = executor

    def resolve(self, destination: str) -> ResolvedGateway:
        """
        Resolve the gateway for ``destination``.

        Args:
            destination: Destination address or CIDR; networks are looked up
                by their network address

        Returns:
            ResolvedGateway with the gateway (None when on-link) and the
            output interface index

        Raises:
            UnreachableDestination: If the kernel has no route to the destination
            TransientKernelError: If the lookup timed out
        """
        address = str(ipaddress.ip_network(destination, strict=False).network_address)
        entry = self.executor.route_get(address)
        if entry is None:
            raise UnreachableDestination(f"no route to {destination}")

        resolved = ResolvedGateway(gateway=entry.get("gateway"), ifindex=entry.get("ifindex"))
        logger.debug(f"Resolved {destination}: gateway={resolved.gateway}, "
                     f"dev={entry.get('dev')}, ifindex={resolved.ifindex}")
        return resolved
