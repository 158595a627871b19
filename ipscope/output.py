"""Output renderer for one-shot lookups: rich table and JSON formatters."""

import json
import logging
import sys
from io import StringIO

from rich.console import Console
from rich.table import Table

from ipscope.exporter import format_coordinate
from ipscope.models import NodeStatus

logger = logging.getLogger(__name__)

FORMATS = ("table", "json")


def render(
    statuses: list[NodeStatus],
    fmt: str,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Dispatch output to the appropriate formatter.

    Args:
        statuses: Per-node outcomes of a refresh.
        fmt: Output format — ``"table"`` or ``"json"``.
        file: Writable file object for output (default: ``sys.stdout``).
        width: Explicit console width (default: auto-detect).

    Raises:
        ValueError: If *fmt* is not ``"table"`` or ``"json"``.
    """
    if fmt == "table":
        render_table(statuses, file=file, width=width)
    elif fmt == "json":
        render_json(statuses, file=file)
    else:
        raise ValueError(f"Unknown output format: {fmt!r}")


# ---------------------------------------------------------------------------
# Table (rich) formatter
# ---------------------------------------------------------------------------

_COLUMNS = (
    "Node",
    "Endpoint",
    "Datacenter",
    "City",
    "Region",
    "Country",
    "Lat",
    "Lon",
    "Error",
)


def render_table(
    statuses: list[NodeStatus],
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Render *statuses* as a ``rich`` table followed by a summary line."""
    out = file or sys.stdout
    console = Console(file=out, highlight=False, width=width)

    table = Table(title=f"Datacenter lookup — {len(statuses)} nodes")
    for header in _COLUMNS:
        justify = "right" if header in ("Lat", "Lon") else "left"
        table.add_column(header, justify=justify)

    for status in statuses:
        info = status.info
        table.add_row(
            status.node.name,
            status.node.endpoint,
            _fmt(info.datacenter),
            _fmt(info.city),
            _fmt(info.region),
            _fmt(info.country),
            format_coordinate(info.latitude),
            format_coordinate(info.longitude),
            _fmt(str(status.error) if status.error else None),
        )

    console.print(table)

    failed = sum(1 for s in statuses if not s.ok)
    console.print(f"  {len(statuses)} nodes, {failed} failed")


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------


def render_json(statuses: list[NodeStatus], *, file: object | None = None) -> None:
    """Render *statuses* as a JSON array to *file*."""
    out = file or sys.stdout
    payload = [_status_to_dict(s) for s in statuses]
    json.dump(payload, out, indent=2)
    out.write("\n")  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _status_to_dict(status: NodeStatus) -> dict:
    info = status.info
    return {
        "node": status.node.name,
        "endpoint": status.node.endpoint,
        "datacenter": info.datacenter,
        "city": info.city,
        "region": info.region,
        "country": info.country,
        "latitude": info.latitude,
        "longitude": info.longitude,
        "error": str(status.error) if status.error else None,
    }


def _fmt(value: str | None) -> str:
    """``None`` and blank strings become ``"—"``."""
    if value is None or not value.strip():
        return "—"
    return value


def render_to_string(statuses: list[NodeStatus], fmt: str, *, width: int = 200) -> str:
    """Render to a string instead of stdout — useful for testing."""
    buf = StringIO()
    render(statuses, fmt, file=buf, width=width)
    return buf.getvalue()
