import json
from datetime import date

import httpx
import pytest

from comps_engine.core.config import Settings
from comps_engine.core.errors import ProviderConfigurationError, ProviderResponseError
from comps_engine.data.base import Condition, PropertyIdentity
from comps_engine.data.bridge import HttpBridge, MockBridge, bridge_provider, synthesize_comparables
from comps_engine.data.gemini import HttpGemini, MockGemini, gemini_provider, parse_llm_comparables
from comps_engine.data.normalize import comparable_from_raw, parse_sale_date, to_float
from comps_engine.data.us_real_estate import HttpUSRealEstate, MockUSRealEstate, us_real_estate_provider
from comps_engine.data.zillow import HttpZillow, zillow_provider

IDENTITY = PropertyIdentity("123 Main St", "Los Angeles", "CA", "90001")


def routes(table: dict, seen: list | None = None) -> httpx.MockTransport:
    """MockTransport answering by URL path; unknown paths are a 404."""
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        body = table.get(request.url.path)
        if body is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)
    return httpx.MockTransport(handler)


HOME = {
    "property_id": "p9",
    "list_price": "$450,000",
    "sold_date": "2025-10-01",
    "href": "https://example.test/p9",
    "description": {"sqft": 1500, "beds": 3, "baths": 2},
    "location": {"address": {"line": "9 Oak Ave"}, "coordinate": {"lat": 34.05, "lon": -118.24}},
}


class TestUSRealEstate:

    @pytest.mark.asyncio
    async def test_similar_homes(self):
        seen = []
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/for-sale/similiar-homes": {"data": {"home_search": {"results": [HOME, {"list_price": None}]}}},
        }, seen))

        comps = await adapter.fetch_comparables(IDENTITY)

        assert len(comps) == 1
        comp = comps[0]
        assert comp.address == "9 Oak Ave"
        assert comp.price == 450_000
        assert comp.square_feet == 1500
        assert comp.sale_date == date(2025, 10, 1)
        assert comp.source_provider == "us_real_estate_similar_homes"
        assert comp.quality_score == 95
        assert seen[0].headers["X-RapidAPI-Key"] == "key"
        assert seen[0].headers["X-RapidAPI-Host"] == "us-real-estate.p.rapidapi.com"
        assert seen[0].url.params["state_code"] == "CA"

    @pytest.mark.asyncio
    async def test_falls_back_to_sold_homes(self):
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/for-sale/similiar-homes": {"data": {"home_search": {"results": []}}},
            "/sold-homes": {"data": {"home_search": {"results": [HOME]}}},
        }))

        comps = await adapter.fetch_comparables(IDENTITY)

        assert [c.source_provider for c in comps] == ["us_real_estate_sold_homes"]

    @pytest.mark.asyncio
    async def test_estimate_via_property_lookup(self):
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/v3/for-sale": {"data": {"home_search": {"results": [
                {"property_id": "other", "location": {"address": {"line": "1 Elm St"}}},
                {"property_id": "p1", "location": {"address": {"line": "123 Main St"}}},
            ]}}},
            "/for-sale/home-estimate-value": {"data": {"estimate": 512_000}},
        }))

        assert await adapter.fetch_estimate(IDENTITY) == 512_000

    @pytest.mark.asyncio
    async def test_no_matching_property_means_no_estimate(self):
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/v3/for-sale": {"data": {"home_search": {"results": []}}},
        }))
        assert await adapter.fetch_estimate(IDENTITY) is None

    @pytest.mark.asyncio
    async def test_missing_key_fails_before_any_request(self):
        seen = []
        adapter = HttpUSRealEstate(None, "https://usre.test", transport=routes({}, seen))

        with pytest.raises(ProviderConfigurationError):
            await adapter.fetch_comparables(IDENTITY)
        assert seen == []

    @pytest.mark.asyncio
    async def test_http_errors_propagate(self):
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/for-sale/similiar-homes": httpx.Response(503, text="busy"),
        }))
        with pytest.raises(httpx.HTTPStatusError):
            await adapter.fetch_comparables(IDENTITY)

    @pytest.mark.asyncio
    async def test_invalid_json_is_a_response_error(self):
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/for-sale/similiar-homes": httpx.Response(200, text="<html>"),
        }))
        with pytest.raises(ProviderResponseError):
            await adapter.fetch_comparables(IDENTITY)

    @pytest.mark.asyncio
    async def test_plan_usage_read_from_rate_headers(self):
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/for-sale/similiar-homes": httpx.Response(
                200,
                json={"data": {"home_search": {"results": [HOME]}}},
                headers={"X-RapidAPI-Requests-Limit": "300", "X-RapidAPI-Requests-Remaining": "45"},
            ),
        }))
        assert adapter.last_usage is None

        await adapter.fetch_comparables(IDENTITY)

        assert adapter.last_usage.limit == 300
        assert adapter.last_usage.remaining == 45
        assert adapter.last_usage.used == 255
        assert adapter.last_usage.percent_used == pytest.approx(85.0)

    @pytest.mark.asyncio
    async def test_plan_usage_kept_from_error_responses(self):
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/for-sale/similiar-homes": httpx.Response(
                429, text="quota", headers={"x-rapidapi-requests-limit": "300",
                                            "x-rapidapi-requests-remaining": "0"},
            ),
        }))

        with pytest.raises(httpx.HTTPStatusError):
            await adapter.fetch_comparables(IDENTITY)
        assert adapter.last_usage.remaining == 0

    @pytest.mark.asyncio
    async def test_missing_or_garbled_rate_headers_are_ignored(self):
        adapter = HttpUSRealEstate("key", "https://usre.test", transport=routes({
            "/for-sale/similiar-homes": httpx.Response(
                200, json={"data": {"home_search": {"results": [HOME]}}},
                headers={"x-rapidapi-requests-limit": "lots"},
            ),
        }))

        await adapter.fetch_comparables(IDENTITY)

        assert adapter.last_usage is None


class TestZillow:

    @pytest.mark.asyncio
    async def test_property_comps_by_zpid(self):
        adapter = HttpZillow("key", "https://zillow.test", transport=routes({
            "/propertyComps": {"comps": [
                {"zpid": 42, "address": "5 Pine St", "price": 610000, "livingArea": 1700,
                 "bedrooms": 3, "bathrooms": 2, "dateSold": 1727740800000},
            ]},
        }))
        identity = PropertyIdentity("123 Main St", "Los Angeles", "CA", "90001", zpid="77")

        comps = await adapter.fetch_comparables(identity)

        assert len(comps) == 1
        assert comps[0].external_link == "https://www.zillow.com/homedetails/42_zpid/"
        assert comps[0].sale_date == date(2024, 10, 1)
        assert comps[0].source_provider == "zillow_property_comps"

    @pytest.mark.asyncio
    async def test_resolves_zpid_then_falls_back_to_search(self):
        seen = []
        adapter = HttpZillow("key", "https://zillow.test", transport=routes({
            "/property": {"zpid": 77},
            "/propertyComps": {"comps": []},
            "/propertyExtendedSearch": {"props": [
                {"zpid": 1, "address": "1 A St", "price": 500000, "detailUrl": "https://z.test/1"},
            ]},
        }, seen))

        comps = await adapter.fetch_comparables(IDENTITY)

        assert [c.quality_score for c in comps] == [100]
        assert comps[0].external_link == "https://z.test/1"
        search = seen[-1]
        assert search.url.params["location"] == "Los Angeles, CA"
        assert search.url.params["status_type"] == "RecentlySold"

    @pytest.mark.asyncio
    async def test_zestimate(self):
        adapter = HttpZillow("key", "https://zillow.test", transport=routes({
            "/property": {"zpid": 77},
            "/zestimate": {"zestimate": 530000},
        }))
        assert await adapter.fetch_estimate(IDENTITY) == 530_000

    @pytest.mark.asyncio
    async def test_history_sources(self):
        adapter = HttpZillow("key", "https://zillow.test", transport=routes({
            "/priceAndTaxHistory": {"priceHistory": [
                {"date": "2021-06-01", "price": 400000},
                {"time": 1262304000000, "price": 250000},
                {"date": "2023-01-01", "price": None},
            ]},
            "/valueHistory/localHomeValues": {"medianHomeValue": 700000, "valueChange": 3.1},
            "/valueHistory/zestimatePercentChange": {"oneYearChange": -2.5},
        }))

        history = await adapter.price_history("77")
        market = await adapter.local_market("Los Angeles, CA")
        change = await adapter.value_change("77")

        assert [p.date for p in history] == [date(2010, 1, 1), date(2021, 6, 1)]
        assert market.median_home_value == 700_000
        assert market.value_change == 3.1
        assert change.one_year == -2.5


class TestGemini:

    def gemini_reply(self, text: str) -> dict:
        return {"candidates": [{"content": {"parts": [{"text": text}]}}]}

    @pytest.mark.asyncio
    async def test_fenced_json_is_parsed(self):
        seen = []
        text = '```json\n[{"address":"1 A St","price":825000,"sqft":1600,"saleDate":"2025-08-15",' \
               '"distance":0.5,"condition":"remodeled"}]\n```'
        adapter = HttpGemini("gkey", "https://gemini.test", "gemini-2.5-flash", transport=routes({
            "/v1beta/models/gemini-2.5-flash:generateContent": self.gemini_reply(text),
        }, seen))

        comps = await adapter.fetch_comparables(IDENTITY)

        assert len(comps) == 1
        assert comps[0].condition is Condition.REMODELED
        assert comps[0].quality_score == 70
        assert comps[0].distance_miles == 0.5
        assert seen[0].url.params["key"] == "gkey"
        assert "123 Main St, Los Angeles, CA 90001" in json.loads(seen[0].content)["contents"][0]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_api_error_body(self):
        adapter = HttpGemini("gkey", "https://gemini.test", "m", transport=routes({
            "/v1beta/models/m:generateContent": {"error": {"message": "quota"}},
        }))
        with pytest.raises(ProviderResponseError, match="quota"):
            await adapter.fetch_comparables(IDENTITY)

    @pytest.mark.asyncio
    async def test_unparseable_text(self):
        adapter = HttpGemini("gkey", "https://gemini.test", "m", transport=routes({
            "/v1beta/models/m:generateContent": self.gemini_reply("Sorry, I can't help"),
        }))
        with pytest.raises(ProviderResponseError):
            await adapter.fetch_comparables(IDENTITY)

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(ProviderConfigurationError):
            await HttpGemini(None, "https://gemini.test", "m").fetch_comparables(IDENTITY)

    def test_parse_accepts_wrapped_object(self):
        assert parse_llm_comparables('{"comps": [{"price": 1}]}') == [{"price": 1}]
        assert parse_llm_comparables("") == []


class TestBridge:

    def test_synthesized_comps(self):
        comps = synthesize_comparables(IDENTITY, 500_000, today=date(2025, 11, 17))

        assert len(comps) == 6
        assert [c.condition for c in comps[:3]] == [Condition.UNREMODELED] * 3
        assert [c.condition for c in comps[3:]] == [Condition.REMODELED] * 3
        assert all(450_000 <= c.price <= 550_000 for c in comps)
        assert all(c.quality_score == 40 and c.source_provider == "bridge" for c in comps)
        assert comps == synthesize_comparables(IDENTITY, 500_000, today=date(2025, 11, 17))

    @pytest.mark.asyncio
    async def test_http_bridge_uses_market_median(self):
        seen = []
        adapter = HttpBridge("bkey", "https://bridge.test", transport=routes({
            "/api/v2/zgecon": {"medianHomeValue": 650000},
        }, seen))

        comps = await adapter.fetch_comparables(IDENTITY)

        assert len(comps) == 6
        assert seen[0].headers["Authorization"] == "Bearer bkey"
        assert seen[0].url.params["city"] == "Los Angeles"

    @pytest.mark.asyncio
    async def test_no_median_means_no_comps(self):
        adapter = HttpBridge("bkey", "https://bridge.test", transport=routes({"/api/v2/zgecon": {}}))
        assert await adapter.fetch_comparables(IDENTITY) == []

    @pytest.mark.asyncio
    async def test_missing_configuration(self):
        with pytest.raises(ProviderConfigurationError):
            await HttpBridge("bkey", None).fetch_comparables(IDENTITY)


class TestMocksAndFactories:

    def test_factories_default_to_mocks(self):
        cfg = Settings()
        assert isinstance(us_real_estate_provider(cfg), MockUSRealEstate)
        assert isinstance(gemini_provider(cfg), MockGemini)
        assert isinstance(bridge_provider(cfg), MockBridge)

    def test_http_mode(self):
        cfg = Settings(ZILLOW_PROVIDER="http", RAPIDAPI_KEY="k")
        adapter = zillow_provider(cfg)
        assert isinstance(adapter, HttpZillow)
        assert adapter.base_url == "https://zillow-com1.p.rapidapi.com"

    @pytest.mark.asyncio
    async def test_mock_is_deterministic(self):
        mock = MockUSRealEstate()
        first = await mock.fetch_comparables(IDENTITY)
        second = await mock.fetch_comparables(IDENTITY)

        assert first == second
        assert len(first) == 6
        assert all(c.price > 0 and c.source_provider == "us_real_estate" for c in first)


@pytest.mark.parametrize("raw,expected", [
    ("2024-08-15", date(2024, 8, 15)),
    ("2024-08-15T10:00:00Z", date(2024, 8, 15)),
    ("8/15/2024", date(2024, 8, 15)),
    (1723680000, date(2024, 8, 15)),
    (1723680000000, date(2024, 8, 15)),
    ("1723680000000", date(2024, 8, 15)),
    ("yesterday", None),
    (None, None),
])
def test_parse_sale_date(raw, expected):
    assert parse_sale_date(raw) == expected


def test_numeric_coercion_and_raw_comparable():
    assert to_float("$1,250,000") == 1_250_000
    assert to_float("n/a") is None
    assert to_float(True) is None

    comp = comparable_from_raw({"address": "1 A St", "price": "410000", "sqft": "1,450",
                                "condition": "as-is"}, "gemini", 70)
    assert comp.square_feet == 1450
    assert comp.condition is Condition.UNREMODELED
    assert comparable_from_raw("garbage", "gemini", 70) is None
