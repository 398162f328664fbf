"""
Error taxonomy for route synchronization.

Permanent errors (policy violations, unreachable destinations, malformed
routes) are surfaced once and never retried by the engine. Transient kernel
errors are retried with backoff before being surfaced.
"""


class RouteError(Exception):
    """Base class for all route synchronization errors."""
    pass


class ProtectedSubnetViolation(RouteError):
    """Raised when a destination overlaps an administrator-protected subnet."""

    def __init__(self, destination: str, protected: str):
        super().__init__(f"destination {destination} overlaps protected subnet {protected}")
        self.destination = destination
        self.protected = protected


class UnreachableDestination(RouteError):
    """Raised when the kernel has no route towards a destination."""
    pass


class InvalidRoute(RouteError):
    """Raised when the kernel rejects route parameters as malformed."""
    pass


class KernelError(RouteError):
    """Raised for non-transient kernel failures (e.g., missing privileges)."""
    pass


class TransientKernelError(RouteError):
    """Raised for kernel failures that may succeed when retried."""
    pass


class RetryExhausted(TransientKernelError):
    """Raised when all retry attempts have been exhausted."""
    pass


class EngineError(RouteError):
    """Raised for engine life-cycle misuse."""
    pass


class EngineStopped(EngineError):
    """Raised when a command is submitted to a stopped engine."""
    pass


class CommandCancelled(EngineError):
    """Set on queued commands discarded when the engine stops."""
    pass


class EngineNotRunning(EngineError):
    """Raised when a command is submitted before the engine has started."""
    pass
