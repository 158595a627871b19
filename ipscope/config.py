"""YAML configuration file loading, defaults and validation."""

import ipaddress
import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ipscope.geolocation import DEFAULT_TIMEOUT
from ipscope.models import NodeConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yml"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9100
DEFAULT_PREFIX = "ipscope"

ALLOWED_HOSTS = ("127.0.0.1", "0.0.0.0")


@dataclass
class ServerConfig:
    """Metrics listener settings.

    Attributes:
        host: Bind address; loopback or all interfaces only.
        port: TCP port.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass
class MetricsConfig:
    """Prefix prepended to every exported metric name."""

    prefix: str = DEFAULT_PREFIX


@dataclass
class LookupConfig:
    """Geolocation lookup settings.

    Attributes:
        timeout: Per-request HTTP timeout in seconds.
        refresh_interval: Seconds between refresh cycles; ``0`` resolves
            once at start-up only.
    """

    timeout: float = DEFAULT_TIMEOUT
    refresh_interval: float = 0.0


@dataclass
class IpscopeConfig:
    """Top-level configuration for the ipscope exporter."""

    server: ServerConfig = field(default_factory=ServerConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    lookup: LookupConfig = field(default_factory=LookupConfig)
    nodes: list[NodeConfig] = field(default_factory=list)

    def validate(self) -> None:
        """Check the configuration for consistency.

        Raises:
            ConfigError: On the first rule that is violated.
        """
        host = self.server.host.strip()
        try:
            ipaddress.ip_address(host)
        except ValueError:
            raise ConfigError("server.host must be a valid IP address") from None
        if host not in ALLOWED_HOSTS:
            raise ConfigError(
                f"server.host must be either {' or '.join(ALLOWED_HOSTS)}"
            )

        if not 0 < self.server.port <= 65535:
            raise ConfigError("server.port must be between 1 and 65535")

        if self.lookup.timeout <= 0:
            raise ConfigError("lookup.timeout must be greater than 0")
        if self.lookup.refresh_interval < 0:
            raise ConfigError("lookup.refresh_interval must not be negative")

        if not self.nodes:
            raise ConfigError("at least one node must be configured")

        names: set[str] = set()
        for i, node in enumerate(self.nodes):
            if not node.name.strip():
                raise ConfigError(f"nodes[{i}].name is required")
            if node.name in names:
                raise ConfigError(f"nodes[{i}].name {node.name!r} is duplicated")
            names.add(node.name)
            try:
                ipaddress.ip_address(node.endpoint.strip())
            except ValueError:
                raise ConfigError(
                    f"nodes[{i}].endpoint must be a valid IP address"
                ) from None


class ConfigError(Exception):
    """Raised when a configuration file is malformed or invalid."""


def load_config(path: Path | str = DEFAULT_CONFIG_PATH) -> IpscopeConfig:
    """Load, default and validate configuration from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        A validated ``IpscopeConfig``.

    Raises:
        FileNotFoundError: If *path* doesn't exist.
        ConfigError: If the file contains invalid YAML, has an unexpected
            structure, or fails validation.
    """
    p = Path(path).expanduser()
    if not p.is_file():
        raise FileNotFoundError(f"Config file not found: {p}")

    logger.debug("Loading config from %s", p)
    text = p.read_text(encoding="utf-8")

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Expected a YAML mapping at the top level in {p}, "
            f"got {type(raw).__name__}"
        )

    cfg = _build_config(raw, source=p)
    cfg.validate()
    return cfg


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------

_SECTIONS = ("server", "metrics", "lookup", "nodes")


def _build_config(raw: dict, source: Path) -> IpscopeConfig:
    """Map a raw YAML dict to an ``IpscopeConfig``, ignoring unknown keys."""
    unknown = set(raw) - set(_SECTIONS)
    if unknown:
        logger.warning(
            "Ignoring unknown config keys in %s: %s",
            source,
            ", ".join(sorted(map(str, unknown))),
        )

    server = _section(raw, "server", source)
    metrics = _section(raw, "metrics", source)
    lookup = _section(raw, "lookup", source)

    cfg = IpscopeConfig(
        server=ServerConfig(
            host=_string(server, "host", "server", DEFAULT_HOST),
            port=_integer(server, "port", "server", DEFAULT_PORT),
        ),
        metrics=MetricsConfig(
            prefix=_string(metrics, "prefix", "metrics", DEFAULT_PREFIX),
        ),
        lookup=LookupConfig(
            timeout=_number(lookup, "timeout", "lookup", DEFAULT_TIMEOUT),
            refresh_interval=_number(lookup, "refresh_interval", "lookup", 0.0),
        ),
        nodes=_nodes(raw.get("nodes"), source),
    )
    return cfg


def _section(raw: dict, name: str, source: Path) -> dict:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(
            f"Expected '{name}' to be a mapping in {source}, got {type(value).__name__}"
        )
    return value


def _string(section: dict, key: str, prefix: str, default: str) -> str:
    value = section.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(f"{prefix}.{key} must be a string")
    # Blank values get the default too.
    return value if value.strip() else default


def _integer(section: dict, key: str, prefix: str, default: int) -> int:
    value = section.get(key)
    if value is None or value == 0:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{prefix}.{key} must be an integer")
    return value


def _number(section: dict, key: str, prefix: str, default: float) -> float:
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{prefix}.{key} must be a number")
    return float(value)


def _nodes(value: object, source: Path) -> list[NodeConfig]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"Expected 'nodes' to be a list in {source}")

    nodes: list[NodeConfig] = []
    for i, entry in enumerate(value):
        if not isinstance(entry, dict):
            raise ConfigError(f"nodes[{i}] must be a mapping with name and endpoint")
        name = entry.get("name")
        endpoint = entry.get("endpoint")
        nodes.append(
            NodeConfig(
                name=str(name).strip() if name is not None else "",
                endpoint=str(endpoint).strip() if endpoint is not None else "",
            )
        )
    return nodes
