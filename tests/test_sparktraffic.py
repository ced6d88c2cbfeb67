"""
Tests for SparkTrafficVendor: HTTP mocking, retries, payload parsing.
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from trafficledger.core.errors import VendorDataInvalid, VendorNotConfigured, VendorUnavailable
from trafficledger.services.vendors import get_vendor, register_vendor, reset_vendors
from trafficledger.services.vendors.sparktraffic import SparkTrafficVendor, parse_buckets


@pytest.fixture
def vendor():
    return SparkTrafficVendor(
        api_key="st_test_key",
        base_url="https://st.test/",
        timeout=2.0,
        retries=3,
        backoff_base=0,
    )


def _resp(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    return resp


def _mock_client(MockClient, request):
    mock_instance = AsyncMock()
    mock_instance.request = request
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=False)
    MockClient.return_value = mock_instance
    return mock_instance


class TestParseBuckets:
    def test_mixed_values(self):
        buckets = parse_buckets([
            {"2026-01-01": 10},
            {"2026-01-02": "5"},
            {"2026-01-03": "n/a"},
            {"2026-01-04": None},
            {"2026-01-05": 7.9},
            "garbage",
        ])
        assert buckets == {
            "2026-01-01": 10,
            "2026-01-02": 5,
            "2026-01-03": 0,
            "2026-01-04": 0,
            "2026-01-05": 7,
        }

    def test_repeated_bucket_is_summed(self):
        assert parse_buckets([{"d": 1}, {"d": 2}]) == {"d": 3}


class TestGetUsage:
    @pytest.mark.asyncio
    async def test_sums_buckets_and_sends_window(self, vendor):
        body = {
            "hits": [{"2026-01-01": 100}, {"2026-01-02": "50"}],
            "visits": [{"2026-01-01": 40}, {"2026-01-02": 10}],
        }
        with patch("httpx.AsyncClient") as MockClient:
            client = _mock_client(MockClient, AsyncMock(return_value=_resp(200, body)))

            usage = await vendor.get_usage("proj-9", date(2026, 1, 1), date(2026, 1, 2))

        assert usage.total_hits == 150
        assert usage.total_visits == 50
        args, kwargs = client.request.call_args
        assert args == ("GET", "https://st.test/get-website-traffic-project-stats")
        assert kwargs["params"] == {"unique_id": "proj-9", "from": "2026-01-01", "to": "2026-01-02"}
        assert kwargs["headers"]["API_KEY"] == "st_test_key"

    @pytest.mark.asyncio
    async def test_empty_hits_list_is_zero_usage(self, vendor):
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, AsyncMock(return_value=_resp(200, {"hits": []})))
            usage = await vendor.get_usage("p", date(2026, 1, 1), date(2026, 1, 1))

        assert usage.total_hits == 0
        assert usage.total_visits == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"hits": "100"}, {"hits": None}, [], "ok"])
    async def test_missing_or_malformed_hits_is_invalid(self, vendor, body):
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, AsyncMock(return_value=_resp(200, body)))
            with pytest.raises(VendorDataInvalid):
                await vendor.get_usage("p", date(2026, 1, 1), date(2026, 1, 1))

    @pytest.mark.asyncio
    async def test_non_json_body_is_invalid(self, vendor):
        resp = _resp(200)
        resp.json.side_effect = ValueError("Expecting value")
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, AsyncMock(return_value=resp))
            with pytest.raises(VendorDataInvalid):
                await vendor.get_usage("p", date(2026, 1, 1), date(2026, 1, 1))


class TestRetries:
    @pytest.mark.asyncio
    async def test_retries_5xx_then_succeeds(self, vendor):
        request = AsyncMock(side_effect=[_resp(503), _resp(200, {"hits": [{"d": 3}]})])
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, request)
            usage = await vendor.get_usage("p", date(2026, 1, 1), date(2026, 1, 1))

        assert usage.total_hits == 3
        assert request.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limited_exhausts_retries(self, vendor):
        request = AsyncMock(return_value=_resp(429))
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, request)
            with pytest.raises(VendorUnavailable) as exc_info:
                await vendor.get_usage("p", date(2026, 1, 1), date(2026, 1, 1))

        assert request.await_count == 3
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_network_error_is_unavailable(self, vendor):
        request = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, request)
            with pytest.raises(VendorUnavailable) as exc_info:
                await vendor.get_usage("p", date(2026, 1, 1), date(2026, 1, 1))

        assert request.await_count == 3
        assert exc_info.value.status_code == 0
        assert exc_info.value.code == "TL-VND-001"

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, vendor):
        request = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, request)
            with pytest.raises(VendorUnavailable):
                await vendor.get_usage("p", date(2026, 1, 1), date(2026, 1, 1))

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, vendor):
        request = AsyncMock(return_value=_resp(404, {"error": "unknown project"}))
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, request)
            with pytest.raises(VendorUnavailable) as exc_info:
                await vendor.get_usage("p", date(2026, 1, 1), date(2026, 1, 1))

        assert request.await_count == 1
        assert exc_info.value.status_code == 404


class TestProjectControl:
    @pytest.mark.asyncio
    async def test_set_speed_posts_modify(self, vendor):
        request = AsyncMock(return_value=_resp(200, {"status": "ok"}))
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, request)
            await vendor.set_speed("proj-3", 0)

        args, kwargs = request.call_args
        assert args == ("POST", "https://st.test/modify-website-traffic-project")
        assert kwargs["json"] == {"unique_id": "proj-3", "speed": 0}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body,expected", [({"new-id": "abc"}, "abc"), ({"id": 77}, "77")])
    async def test_create_project_returns_id(self, vendor, body, expected):
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, AsyncMock(return_value=_resp(200, body)))
            project_id = await vendor.create_project({"title": "x"})

        assert project_id == expected

    @pytest.mark.asyncio
    async def test_create_project_without_id_is_invalid(self, vendor):
        with patch("httpx.AsyncClient") as MockClient:
            _mock_client(MockClient, AsyncMock(return_value=_resp(200, {"status": "queued"})))
            with pytest.raises(VendorDataInvalid):
                await vendor.create_project({"title": "x"})


class TestRegistry:
    def teardown_method(self):
        reset_vendors()

    def test_unknown_vendor(self):
        with pytest.raises(VendorNotConfigured):
            get_vendor("ninehits")

    def test_missing_credentials(self):
        with patch("trafficledger.services.vendors.settings") as mock_settings:
            mock_settings.sparktraffic_api_key = None
            mock_settings.default_vendor = "sparktraffic"
            with pytest.raises(VendorNotConfigured):
                get_vendor("sparktraffic")

    def test_builds_and_caches_adapter(self):
        with patch("trafficledger.services.vendors.settings") as mock_settings:
            mock_settings.sparktraffic_api_key = "st_key"
            mock_settings.default_vendor = "sparktraffic"
            first = get_vendor()
            second = get_vendor("SparkTraffic")

        assert isinstance(first, SparkTrafficVendor)
        assert first is second

    def test_registered_adapter_wins(self, fake_vendor):
        register_vendor("sparktraffic", fake_vendor)
        assert get_vendor("sparktraffic") is fake_vendor
