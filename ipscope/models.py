"""Data models: NodeConfig, DatacenterInfo, NodeStatus dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ipscope.errors import ResolutionError

UNKNOWN = "unknown"


@dataclass(frozen=True)
class NodeConfig:
    """A configured node endpoint.

    Attributes:
        name: Human-readable node name, unique within a config file.
        endpoint: IPv4 or IPv6 address of the node's public endpoint.
    """

    name: str
    endpoint: str

    @property
    def key(self) -> tuple[str, str]:
        """Label identity of the node in exported metrics."""
        return (self.name, self.endpoint)


@dataclass
class DatacenterInfo:
    """Location data for one resolved endpoint.

    Text fields may be empty when the provider had no value for them; the
    exporter substitutes ``"unknown"`` at label time.

    Attributes:
        datacenter: Hosting organisation / network label.
        city: City name.
        region: Region (state, province) name.
        country: Country name.
        latitude: Latitude in degrees.
        longitude: Longitude in degrees.
    """

    datacenter: str = ""
    city: str = ""
    region: str = ""
    country: str = ""
    latitude: float = 0.0
    longitude: float = 0.0

    @classmethod
    def unknown(cls) -> DatacenterInfo:
        """Return the placeholder used when a lookup fails."""
        return cls(
            datacenter=UNKNOWN,
            city=UNKNOWN,
            region=UNKNOWN,
            country=UNKNOWN,
            latitude=0.0,
            longitude=0.0,
        )


@dataclass
class NodeStatus:
    """Outcome of a single node in the most recent refresh cycle.

    Attributes:
        node: The configured node.
        info: Resolved info, or the ``unknown`` placeholder on failure.
        error: The lookup failure, or ``None`` on success.
    """

    node: NodeConfig
    info: DatacenterInfo
    error: ResolutionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
