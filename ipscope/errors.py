"""Exception hierarchy for datacenter lookups and refresh cycles."""

from __future__ import annotations

from dataclasses import dataclass

from ipscope.models import NodeConfig


class ResolutionError(Exception):
    """Base class for a failed datacenter lookup of a single endpoint."""


class Cancelled(ResolutionError):
    """The cancellation signal fired while waiting for rate-limit allowance."""


class TransportError(ResolutionError):
    """The request never produced an HTTP response (connection, timeout)."""


class RateLimited(ResolutionError):
    """The provider signalled throttling.

    Attributes:
        remaining: Raw value of the remaining-requests header, if any.
        ttl: Raw value of the seconds-until-reset header, if any.
    """

    def __init__(self, reason: str, remaining: str | None, ttl: str | None) -> None:
        self.reason = reason
        self.remaining = remaining
        self.ttl = ttl
        super().__init__(
            f"{reason} (rate limited, X-Rl={remaining or ''!r}, X-Ttl={ttl or ''!r})"
        )


class ProviderError(ResolutionError):
    """The provider answered, but not with a usable success payload.

    Attributes:
        message: Provider-supplied or derived failure reason.
        status_code: HTTP status code, when the failure was a non-2xx status.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class NodeFailure:
    """A lookup failure attributed to the node it happened for."""

    node: NodeConfig
    error: ResolutionError

    def __str__(self) -> str:
        return f"resolve node {self.node.name!r} ({self.node.endpoint}): {self.error}"


class RefreshError(Exception):
    """Joined, non-fatal failures of one refresh cycle.

    Attributes:
        failures: One entry per node whose lookup failed, in input order.
    """

    def __init__(self, failures: list[NodeFailure]) -> None:
        self.failures = list(failures)
        super().__init__("\n".join(str(f) for f in self.failures))


class MetricsRegistrationError(Exception):
    """The metrics registry rejected one of the exporter's collectors."""
