"""Tests for the ip-api.com resolver (ipscope.geolocation)."""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from ipscope.errors import (
    Cancelled,
    ProviderError,
    RateLimited,
    ResolutionError,
    TransportError,
)
from ipscope.geolocation import (
    DEFAULT_BASE_URL,
    IpApiClient,
    Resolver,
    datacenter_label,
)
from ipscope.models import DatacenterInfo
from ipscope.ratelimit import RateGate

# ---------------------------------------------------------------------------
# Helpers: fake HTTP responses
# ---------------------------------------------------------------------------


def _payload(**overrides: object) -> dict:
    """A successful ip-api.com body for a Hetzner host in Falkenstein."""
    body: dict = {
        "status": "success",
        "country": "Germany",
        "countryCode": "DE",
        "region": "SN",
        "regionName": "Saxony",
        "city": "Falkenstein",
        "lat": 50.4777,
        "lon": 12.3649,
        "timezone": "Europe/Berlin",
        "isp": "Hetzner Online GmbH",
        "org": "Hetzner",
        "query": "203.0.113.10",
    }
    body.update(overrides)
    return body


def _response(
    status_code: int = 200,
    body: object = None,
    headers: dict | None = None,
) -> MagicMock:
    """Build a minimal object mimicking ``requests.Response``."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = headers or {}
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = _payload() if body is None else body
    return resp


class FakeClock:
    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


def _client(resp: MagicMock | None = None, **kwargs: object) -> tuple[IpApiClient, MagicMock]:
    """Client wired to a mock session and a gate with no spacing."""
    session = MagicMock()
    if resp is not None:
        session.get.return_value = resp
    gate = kwargs.pop("gate", None) or RateGate(min_interval=0)
    client = IpApiClient(session=session, gate=gate, **kwargs)  # type: ignore[arg-type]
    return client, session


# ---------------------------------------------------------------------------
# Tests: datacenter_label
# ---------------------------------------------------------------------------


class TestDatacenterLabel:
    """Precedence: org, isp, city-region, city, unknown."""

    def test_org_wins(self) -> None:
        assert datacenter_label("Hetzner", "Hetzner Online", "Falkenstein", "Saxony") == "Hetzner"

    def test_isp_when_no_org(self) -> None:
        assert datacenter_label("", "ACME", "Paris", "IDF") == "ACME"

    def test_city_region_when_no_org_or_isp(self) -> None:
        assert datacenter_label("", "", "Paris", "IDF") == "Paris-IDF"

    def test_city_alone(self) -> None:
        assert datacenter_label("", "", "Paris", "") == "Paris"

    def test_all_empty(self) -> None:
        assert datacenter_label("", "", "", "") == "unknown"

    def test_blank_values_are_skipped(self) -> None:
        assert datacenter_label("  ", " ", "", "") == "unknown"


# ---------------------------------------------------------------------------
# Tests: Resolver ABC
# ---------------------------------------------------------------------------


class TestResolverABC:
    def test_cannot_instantiate(self) -> None:
        with pytest.raises(TypeError, match="abstract method"):
            Resolver()  # type: ignore[abstract]

    def test_client_is_resolver(self) -> None:
        client, _ = _client()
        assert isinstance(client, Resolver)


# ---------------------------------------------------------------------------
# Tests: IpApiClient.resolve_datacenter
# ---------------------------------------------------------------------------


class TestResolveSuccess:
    """Happy path and success-response side effects."""

    def test_returns_populated_info(self) -> None:
        client, session = _client(_response())

        info = client.resolve_datacenter("203.0.113.10")

        assert info == DatacenterInfo(
            datacenter="Hetzner",
            city="Falkenstein",
            region="Saxony",
            country="Germany",
            latitude=50.4777,
            longitude=12.3649,
        )
        session.get.assert_called_once_with(
            f"{DEFAULT_BASE_URL}/203.0.113.10", timeout=10.0
        )

    def test_endpoint_is_trimmed_and_quoted(self) -> None:
        client, session = _client(_response(), base_url="http://geo.test/json/")

        client.resolve_datacenter(" 2001:db8::1 ")

        url = session.get.call_args.args[0]
        assert url == "http://geo.test/json/2001%3Adb8%3A%3A1"

    def test_custom_timeout(self) -> None:
        client, session = _client(_response(), timeout=3.0)
        client.resolve_datacenter("203.0.113.10")
        assert session.get.call_args.kwargs["timeout"] == 3.0

    def test_empty_fields_stay_empty(self) -> None:
        body = _payload(org="", isp="", city="", regionName="", country="")
        client, _ = _client(_response(body=body))

        info = client.resolve_datacenter("203.0.113.10")

        assert info.datacenter == "unknown"
        assert info.city == ""
        assert info.region == ""
        assert info.country == ""

    def test_missing_coordinates_default_to_zero(self) -> None:
        body = _payload()
        del body["lat"]
        body["lon"] = None
        client, _ = _client(_response(body=body))

        info = client.resolve_datacenter("203.0.113.10")

        assert info.latitude == 0.0
        assert info.longitude == 0.0

    def test_zero_remaining_still_returns_payload(self) -> None:
        clock = FakeClock()
        gate = RateGate(min_interval=0, clock=clock)
        client, _ = _client(
            _response(headers={"X-Rl": "0", "X-Ttl": "42"}), gate=gate
        )

        info = client.resolve_datacenter("203.0.113.10")

        assert info.datacenter == "Hetzner"
        assert gate.blocked_until == 542.0

    def test_nonzero_remaining_leaves_gate_alone(self) -> None:
        gate = RateGate(min_interval=0)
        client, _ = _client(
            _response(headers={"X-Rl": "44", "X-Ttl": "60"}), gate=gate
        )

        client.resolve_datacenter("203.0.113.10")

        assert gate.blocked_until is None

    def test_one_request_per_call(self) -> None:
        client, session = _client(_response())
        client.resolve_datacenter("203.0.113.10")
        client.resolve_datacenter("203.0.113.11")
        assert session.get.call_count == 2


class TestResolveFailures:
    """Each failure maps to one error type and is never retried."""

    def test_transport_error(self) -> None:
        client, session = _client()
        session.get.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(TransportError, match="connection refused"):
            client.resolve_datacenter("203.0.113.10")
        session.get.assert_called_once()

    def test_timeout_is_transport_error(self) -> None:
        client, session = _client()
        session.get.side_effect = requests.Timeout("read timed out")

        with pytest.raises(TransportError):
            client.resolve_datacenter("203.0.113.10")

    def test_http_429_reports_ttl(self) -> None:
        clock = FakeClock()
        gate = RateGate(min_interval=0, clock=clock)
        client, session = _client(
            _response(status_code=429, headers={"X-Rl": "0", "X-Ttl": "30"}),
            gate=gate,
        )

        with pytest.raises(RateLimited) as exc_info:
            client.resolve_datacenter("203.0.113.10")

        assert exc_info.value.remaining == "0"
        assert exc_info.value.ttl == "30"
        assert "X-Ttl='30'" in str(exc_info.value)
        assert gate.blocked_until == 530.0
        session.get.assert_called_once()

    def test_http_429_without_headers(self) -> None:
        gate = RateGate(min_interval=0)
        client, _ = _client(_response(status_code=429), gate=gate)

        with pytest.raises(RateLimited):
            client.resolve_datacenter("203.0.113.10")
        assert gate.blocked_until is None

    @pytest.mark.parametrize("status", [400, 404, 500, 503])
    def test_other_status_is_provider_error(self, status: int) -> None:
        gate = RateGate(min_interval=0)
        client, _ = _client(
            _response(status_code=status, headers={"X-Ttl": "30"}), gate=gate
        )

        with pytest.raises(ProviderError) as exc_info:
            client.resolve_datacenter("203.0.113.10")

        assert exc_info.value.status_code == status
        assert str(status) in str(exc_info.value)
        assert gate.blocked_until is None

    def test_undecodable_body(self) -> None:
        client, _ = _client(_response(body=ValueError("Expecting value")))

        with pytest.raises(ProviderError, match="decode geolocation API response"):
            client.resolve_datacenter("203.0.113.10")

    def test_non_object_body(self) -> None:
        client, _ = _client(_response(body=["not", "an", "object"]))

        with pytest.raises(ProviderError, match="expected an object"):
            client.resolve_datacenter("203.0.113.10")

    def test_provider_failure_message(self) -> None:
        body = {"status": "fail", "message": "private range", "query": "10.0.0.1"}
        gate = RateGate(min_interval=0)
        client, _ = _client(_response(body=body, headers={"X-Ttl": "30"}), gate=gate)

        with pytest.raises(ProviderError, match="private range"):
            client.resolve_datacenter("10.0.0.1")
        assert gate.blocked_until is None

    def test_provider_failure_without_message(self) -> None:
        client, _ = _client(_response(body={"status": "fail"}))

        with pytest.raises(ProviderError, match="geolocation API error: unknown"):
            client.resolve_datacenter("203.0.113.10")

    def test_throttling_message_is_rate_limited(self) -> None:
        clock = FakeClock()
        gate = RateGate(min_interval=0, clock=clock)
        body = {"status": "fail", "message": "Too Many Requests"}
        client, _ = _client(
            _response(body=body, headers={"X-Rl": "0", "X-Ttl": "12"}), gate=gate
        )

        with pytest.raises(RateLimited, match="Too Many Requests"):
            client.resolve_datacenter("203.0.113.10")
        assert gate.blocked_until == 512.0

    def test_all_failures_are_resolution_errors(self) -> None:
        for exc_type in (Cancelled, TransportError, RateLimited, ProviderError):
            assert issubclass(exc_type, ResolutionError)


class TestResolveCancellation:
    def test_cancelled_before_request(self) -> None:
        client, session = _client(_response())
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(Cancelled):
            client.resolve_datacenter("203.0.113.10", cancel)

        session.get.assert_not_called()


class TestClientLifecycle:
    def test_owned_session_is_closed(self) -> None:
        with patch("ipscope.geolocation.requests.Session") as session_cls:
            with IpApiClient() as client:
                assert client._session is session_cls.return_value
        session_cls.return_value.close.assert_called_once()

    def test_injected_session_is_not_closed(self) -> None:
        client, session = _client()
        client.close()
        session.close.assert_not_called()

    def test_default_gate_created(self) -> None:
        client = IpApiClient(session=MagicMock())
        assert isinstance(client.gate, RateGate)
        assert client.gate.min_interval == 1.5
