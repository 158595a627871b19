"""Prometheus exporter: per-node datacenter identity and lookup-error gauges."""

import logging
import re
import threading

from prometheus_client import CollectorRegistry, Gauge

from ipscope.errors import (
    MetricsRegistrationError,
    NodeFailure,
    RefreshError,
    ResolutionError,
)
from ipscope.geolocation import Resolver
from ipscope.models import UNKNOWN, DatacenterInfo, NodeConfig, NodeStatus

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "ipscope"

INFO_LABELS = (
    "node",
    "endpoint",
    "datacenter",
    "city",
    "region",
    "country",
    "latitude",
    "longitude",
)
ERROR_LABELS = ("node", "endpoint")

_INVALID_METRIC_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def normalize_metric_prefix(prefix: str) -> str:
    """Turn *prefix* into a valid metric-name prefix.

    Invalid characters become ``_``; leading and trailing underscores are
    stripped.  Blank results fall back to ``DEFAULT_PREFIX``.
    """
    trimmed = prefix.strip()
    if not trimmed:
        return DEFAULT_PREFIX

    normalized = _INVALID_METRIC_CHARS.sub("_", trimmed).strip("_")
    return normalized or DEFAULT_PREFIX


def format_coordinate(value: float) -> str:
    """Render a coordinate with a fixed six decimal places."""
    return f"{value:.6f}"


def _value_or_unknown(value: str) -> str:
    return value if value.strip() else UNKNOWN


class Exporter:
    """Resolve nodes and publish the outcome as two gauge families.

    ``<prefix>_node_datacenter_info`` carries the resolved location in its
    labels and is always 1.  ``<prefix>_node_datacenter_lookup_error`` is 1
    when the last lookup for the node failed, 0 otherwise.  Every configured
    node has exactly one series in each family after a refresh.

    Args:
        registry: Registry to register both gauge families in.
        prefix: Metric-name prefix (normalised).
        resolver: Resolver used for every lookup.

    Raises:
        MetricsRegistrationError: If the registry rejects either family.
            Nothing stays registered in that case.
    """

    def __init__(
        self,
        registry: CollectorRegistry,
        prefix: str,
        resolver: Resolver,
    ) -> None:
        name_prefix = normalize_metric_prefix(prefix)

        self._resolver = resolver
        self._info = Gauge(
            f"{name_prefix}_node_datacenter_info",
            "Node datacenter identity labels. Gauge value is always 1.",
            INFO_LABELS,
            registry=None,
        )
        self._error = Gauge(
            f"{name_prefix}_node_datacenter_lookup_error",
            "Datacenter lookup error status (1=error, 0=success).",
            ERROR_LABELS,
            registry=None,
        )

        registered = []
        try:
            for collector in (self._info, self._error):
                registry.register(collector)
                registered.append(collector)
        except ValueError as exc:
            for collector in registered:
                registry.unregister(collector)
            raise MetricsRegistrationError(
                f"register prometheus collector: {exc}"
            ) from exc

        self._lock = threading.Lock()
        # node key -> identity label values currently exported
        self._info_series: dict[tuple[str, str], tuple[str, ...]] = {}
        self._statuses: list[NodeStatus] = []

    def refresh(
        self,
        nodes: list[NodeConfig],
        cancel: threading.Event | None = None,
    ) -> RefreshError | None:
        """Resolve every node in order and update both gauge families.

        Lookup failures never stop the cycle: the node gets the
        ``unknown`` placeholder labels and an error flag of 1.  Series of
        nodes missing from *nodes* are removed.

        Args:
            nodes: The full list of configured nodes.
            cancel: Optional event passed through to the resolver.

        Returns:
            A ``RefreshError`` joining every per-node failure, or ``None``
            when all lookups succeeded.
        """
        with self._lock:
            failures: list[NodeFailure] = []
            statuses: list[NodeStatus] = []
            seen: set[tuple[str, str]] = set()

            for node in nodes:
                try:
                    info = self._resolver.resolve_datacenter(node.endpoint, cancel)
                except ResolutionError as exc:
                    logger.debug("Lookup failed for %s (%s): %s", node.name, node.endpoint, exc)
                    failures.append(NodeFailure(node, exc))
                    statuses.append(NodeStatus(node, DatacenterInfo.unknown(), exc))
                    info = DatacenterInfo.unknown()
                    self._error.labels(node.name, node.endpoint).set(1)
                else:
                    statuses.append(NodeStatus(node, info))
                    self._error.labels(node.name, node.endpoint).set(0)

                self._set_info(node, info)
                seen.add(node.key)

            for key in set(self._info_series) - seen:
                self._drop_node(key)

            self._statuses = statuses

        logger.info(
            "Refreshed %d node(s), %d lookup failure(s)", len(nodes), len(failures)
        )
        if failures:
            return RefreshError(failures)
        return None

    def statuses(self) -> list[NodeStatus]:
        """Return per-node outcomes of the most recent refresh."""
        with self._lock:
            return list(self._statuses)

    def _set_info(self, node: NodeConfig, info: DatacenterInfo) -> None:
        labels = (
            node.name,
            node.endpoint,
            _value_or_unknown(info.datacenter),
            _value_or_unknown(info.city),
            _value_or_unknown(info.region),
            _value_or_unknown(info.country),
            format_coordinate(info.latitude),
            format_coordinate(info.longitude),
        )
        self._info.labels(*labels).set(1)

        previous = self._info_series.get(node.key)
        if previous is not None and previous != labels:
            self._info.remove(*previous)
        self._info_series[node.key] = labels

    def _drop_node(self, key: tuple[str, str]) -> None:
        logger.debug("Removing series for unconfigured node %s (%s)", *key)
        self._info.remove(*self._info_series.pop(key))
        self._error.remove(*key)


def refresh_loop(
    exporter: Exporter,
    nodes: list[NodeConfig],
    interval: float,
    stop: threading.Event,
) -> None:
    """Refresh now and then every *interval* seconds until *stop* is set.

    A non-positive *interval* runs a single refresh.  Refresh failures are
    logged, never raised.
    """
    while not stop.is_set():
        err = exporter.refresh(nodes, stop)
        if err is not None:
            logger.warning("Datacenter lookup finished with warnings: %s", err)

        if interval <= 0 or stop.wait(interval):
            return
