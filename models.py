"""
Pydantic data models for the Static Route Agent.

These models define the route intents exchanged with the intent source,
the routes handed to the synchronization engine, and the per-node status
reported back for every intent.
"""

import ipaddress
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


MAIN_TABLE = 254


def normalize_cidr(value: str) -> str:
    """Return ``value`` as a network CIDR string (host bits cleared)."""
    return str(ipaddress.ip_network(value.strip(), strict=False))


class RouteIntent(BaseModel):
    """
    Declarative request for one static route.

    Attributes:
        name: Unique intent name
        subnet: Destination network in CIDR notation (e.g., "192.168.1.0/24")
        gateway: Explicit next hop, or None to resolve it from the kernel
        node: Hostname of the target node, or None for every node
        generation: Revision counter bumped by the intent source on update
    """
    name: str = Field(..., min_length=1, description="Intent name")
    subnet: str = Field(..., description="Destination CIDR")
    gateway: Optional[str] = Field(None, description="Explicit gateway IP")
    node: Optional[str] = Field(None, description="Target node hostname")
    generation: int = Field(0, ge=0, description="Intent revision")

    @field_validator('subnet')
    @classmethod
    def validate_subnet(cls, v):
        """Normalize the destination to its network address."""
        if '/' not in v:
            raise ValueError("subnet must be in CIDR notation (e.g., 192.168.1.0/24)")
        return normalize_cidr(v)

    @field_validator('gateway')
    @classmethod
    def validate_gateway(cls, v):
        if v is None or v == "":
            return None
        return str(ipaddress.ip_address(v.strip()))

    def targets(self, hostname: str) -> bool:
        """Whether this intent applies to ``hostname``."""
        return self.node is None or self.node == hostname


class ResolvedRoute(BaseModel):
    """
    Concrete kernel route derived from a RouteIntent.

    Attributes:
        destination: Destination network in CIDR notation
        gateway: Next hop IP, or None before resolution / for on-link routes
        table: Kernel routing table id
        ifindex: Output interface index, when known
    """
    model_config = ConfigDict(frozen=True)

    destination: str
    gateway: Optional[str] = None
    table: int = Field(MAIN_TABLE, ge=0, le=254)
    ifindex: Optional[int] = Field(None, gt=0)

    @field_validator('destination')
    @classmethod
    def validate_destination(cls, v):
        return normalize_cidr(v)

    @field_validator('gateway')
    @classmethod
    def validate_gateway(cls, v):
        if v is None:
            return None
        return str(ipaddress.ip_address(v))


class AddRoute(BaseModel):
    """Install-or-update command."""
    model_config = ConfigDict(frozen=True)

    op: Literal["add"] = "add"
    route: ResolvedRoute


class DeleteRoute(BaseModel):
    """Idempotent removal command."""
    model_config = ConfigDict(frozen=True)

    op: Literal["delete"] = "delete"
    route: ResolvedRoute


RouteCommand = Annotated[Union[AddRoute, DeleteRoute], Field(discriminator="op")]


class KernelRoute(BaseModel):
    """A route entry as read back from the kernel."""
    destination: str
    gateway: Optional[str] = None
    device: Optional[str] = None


class IntentEvent(BaseModel):
    """Life-cycle event delivered by the watch mechanism."""
    kind: Literal["created", "updated", "deleted"]
    intent: RouteIntent


class ReconcileResult(BaseModel):
    """Outcome of one reconciliation, including the requeue request."""
    requeue: bool = False
    requeue_after: Optional[float] = Field(None, ge=0.0)


class NodeRouteStatus(BaseModel):
    """
    Observable status of an intent on one node.

    Attributes:
        hostname: Node that reports the status
        state: "applied", "pending", "failed" or "rejected"
        destination: Destination CIDR the node worked on
        gateway: Gateway actually installed (resolved or explicit)
        table: Kernel table id
        error: Error message for non-applied states
        permanent: True when the failure will not be retried
    """
    hostname: str = Field(..., min_length=1)
    state: Literal["applied", "pending", "failed", "rejected"]
    destination: str
    gateway: Optional[str] = None
    table: int = Field(MAIN_TABLE, ge=0, le=254)
    error: Optional[str] = None
    permanent: bool = False


class IntentList(BaseModel):
    """Response envelope for intent listings."""
    intents: List[RouteIntent] = Field(default_factory=list)
