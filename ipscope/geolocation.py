"""Datacenter resolution: abstract Resolver and the ip-api.com client."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from urllib.parse import quote

import requests

from ipscope.errors import ProviderError, RateLimited, TransportError
from ipscope.models import UNKNOWN, DatacenterInfo
from ipscope.ratelimit import RateGate

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://ip-api.com/json"
DEFAULT_TIMEOUT = 10.0

# ip-api.com rate-limit headers.
REMAINING_HEADER = "X-Rl"
TTL_HEADER = "X-Ttl"

_RATE_LIMIT_MESSAGE = "too many requests"


class Resolver(ABC):
    """Resolve a node endpoint to its datacenter location."""

    @abstractmethod
    def resolve_datacenter(
        self,
        endpoint: str,
        cancel: threading.Event | None = None,
    ) -> DatacenterInfo:
        """Look up *endpoint*.

        Args:
            endpoint: IPv4 or IPv6 address.
            cancel: Optional event that aborts any pending wait.

        Returns:
            The resolved ``DatacenterInfo``.

        Raises:
            ResolutionError: On any lookup failure.
        """


def datacenter_label(org: str, isp: str, city: str, region: str) -> str:
    """Pick the most specific datacenter label available.

    Precedence: organisation, ISP, ``"<city>-<region>"`` (when both are
    known), city, ``"unknown"``.
    """
    city_region = f"{city}-{region}" if city.strip() and region.strip() else ""
    for candidate in (org, isp, city_region, city):
        if candidate.strip():
            return candidate
    return UNKNOWN


class IpApiClient(Resolver):
    """Resolver backed by the ip-api.com JSON endpoint.

    Every call goes through the client's ``RateGate`` and sends exactly one
    HTTP request; nothing is retried here.

    Args:
        timeout: Per-request timeout in seconds.
        base_url: API root; the endpoint is appended as a path segment.
        gate: Rate gate to use.  A fresh one is created if omitted.
        session: ``requests.Session`` to use.  A fresh one is created (and
            owned) if omitted.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = DEFAULT_BASE_URL,
        gate: RateGate | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")
        self.gate = gate or RateGate()
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> IpApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def resolve_datacenter(
        self,
        endpoint: str,
        cancel: threading.Event | None = None,
    ) -> DatacenterInfo:
        self.gate.await_turn(cancel)

        url = f"{self._base_url}/{quote(endpoint.strip(), safe='')}"
        logger.debug("GET %s", url)

        try:
            resp = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise TransportError(f"request geolocation API: {exc}") from exc

        remaining = resp.headers.get(REMAINING_HEADER)
        ttl = resp.headers.get(TTL_HEADER)

        if resp.status_code == 429:
            self.gate.report_rate_limited(ttl)
            raise RateLimited(
                f"geolocation API returned status {resp.status_code}", remaining, ttl
            )

        if not 200 <= resp.status_code < 300:
            raise ProviderError(
                f"geolocation API returned status {resp.status_code}",
                status_code=resp.status_code,
            )

        # A success response can still announce that the window is exhausted.
        if remaining is not None and remaining.strip() == "0":
            self.gate.report_rate_limited(ttl)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderError(f"decode geolocation API response: {exc}") from exc

        if not isinstance(payload, dict):
            raise ProviderError(
                f"decode geolocation API response: expected an object, "
                f"got {type(payload).__name__}"
            )

        if payload.get("status") != "success":
            reason = _text(payload.get("message")).strip() or UNKNOWN
            if _RATE_LIMIT_MESSAGE in reason.lower():
                self.gate.report_rate_limited(ttl)
                raise RateLimited(f"geolocation API error: {reason}", remaining, ttl)
            raise ProviderError(f"geolocation API error: {reason}")

        return _parse_info(payload)


def _parse_info(payload: dict) -> DatacenterInfo:
    """Build a ``DatacenterInfo`` from a successful ip-api.com payload."""
    city = _text(payload.get("city"))
    region = _text(payload.get("regionName"))

    return DatacenterInfo(
        datacenter=datacenter_label(
            _text(payload.get("org")),
            _text(payload.get("isp")),
            city,
            region,
        ),
        city=city,
        region=region,
        country=_text(payload.get("country")),
        latitude=_coordinate(payload.get("lat")),
        longitude=_coordinate(payload.get("lon")),
    )


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


def _coordinate(value: object) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
