"""
Protected subnet guard.

Administrator-declared networks must never become route destinations
managed by the agent, in either containment direction.
"""

import ipaddress
from typing import Iterable, Optional, Tuple, Union


Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class ProtectedSubnetGuard:
    """
    Pure overlap predicate over an immutable set of protected networks.

    Attributes:
        subnets: Protected networks, in configuration order
    """

    def __init__(self, subnets: Iterable[Union[str, Network]] = ()):
        self.subnets: Tuple[Network, ...] = tuple(
            ipaddress.ip_network(subnet, strict=False) for subnet in subnets
        )

    def matching(self, candidate: Union[str, Network]) -> Optional[Network]:
        """
        Return the first protected subnet overlapping ``candidate``.

        Overlap covers both the candidate containing a protected subnet and
        a protected subnet containing the candidate.

        Args:
            candidate: Destination network (CIDR string or network object)

        Returns:
            The offending protected network, or None
        """
        network = ipaddress.ip_network(candidate, strict=False)
        for protected in self.subnets:
            if protected.version != network.version:
                continue
            if network.overlaps(protected):
                return protected
        return None

    def is_protected(self, candidate: Union[str, Network]) -> bool:
        return self.matching(candidate) is not None

    def __len__(self) -> int:
        return len(self.subnets)
