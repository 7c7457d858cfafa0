import base64

import httpx
import pytest
from fakes import variant

from catalog_sync.clients.base import QuotaTracker, RateLimitedClient, parse_quota_header
from catalog_sync.clients.lightspeed import LightspeedClient
from catalog_sync.clients.picqer import PicqerClient
from catalog_sync.errors import FatalSetupFailure, MalformedResponse, UpstreamThrottled, UpstreamUnavailable


def _client(handler, sleeps: list[float] | None = None, **kwargs) -> RateLimitedClient:
    async def fake_sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    kwargs.setdefault("spacing_seconds", (0.0, 0.0, 0.0))
    return RateLimitedClient(
        "https://api.example.com/v1",
        "key",
        "secret",
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
        **kwargs,
    )


async def test_throttling_backs_off_exponentially_then_fails():
    calls = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(429, text="slow down")

    async with _client(handler, sleeps) as client:
        with pytest.raises(UpstreamThrottled) as exc_info:
            await client.request("/products")

    assert sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert calls["count"] == 6
    assert "rate limit exceeded" in str(exc_info.value)
    assert exc_info.value.status_code == 429


async def test_throttling_recovers_before_the_cap():
    calls = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] <= 5:
            return httpx.Response(429)
        return httpx.Response(200, json={"ok": True})

    async with _client(handler, sleeps) as client:
        assert await client.request("/products") == {"ok": True}

    assert sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert calls["count"] == 6


async def test_network_errors_share_the_backoff_schedule():
    calls = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=[1, 2])

    async with _client(handler, sleeps) as client:
        assert await client.request("/products") == [1, 2]

    assert sleeps == [1.0, 2.0]


async def test_network_errors_exhaust_into_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with _client(handler, [], max_retries=2) as client:
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.request("/products")

    assert "timed out" in str(exc_info.value)


async def test_other_errors_fail_immediately_with_status_and_body():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404, text="not found")

    async with _client(handler) as client:
        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.request("/missing")

    assert calls["count"] == 1
    assert exc_info.value.status_code == 404
    assert exc_info.value.body == "not found"
    assert "404" in str(exc_info.value)


async def test_invalid_json_is_malformed_and_empty_body_is_none():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/empty"):
            return httpx.Response(204)
        return httpx.Response(200, text="<html>oops</html>")

    async with _client(handler) as client:
        assert await client.request("/empty") is None
        with pytest.raises(MalformedResponse):
            await client.request("/html")


async def test_requests_carry_basic_auth_and_absolute_links_pass_through():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    async with _client(handler) as client:
        await client.request("/products", params={"page": 2})
        await client.request("https://cdn.example.com/nl/brands/1.json")

    expected = "Basic " + base64.b64encode(b"key:secret").decode("ascii")
    assert seen[0].headers["Authorization"] == expected
    assert seen[0].url.path == "/v1/products"
    assert seen[0].url.params["page"] == "2"
    assert str(seen[1].url) == "https://cdn.example.com/nl/brands/1.json"


async def test_quota_headers_update_tracker_and_slow_pacing():
    remaining = {"value": "200"}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={}, headers={"X-RateLimit-Limit": "300/3000", "X-RateLimit-Remaining": remaining["value"]})

    async with _client(handler, spacing_seconds=(0.1, 0.3, 1.0), low_water_mark=10) as client:
        assert client.pacing_delay() == 0.1
        await client.request("/a")
        assert client.quota.limit == 300
        assert client.quota.remaining == 200
        assert client.pacing_delay() == 0.1

        remaining["value"] = "30/2000"
        await client.request("/b")
        assert client.pacing_delay() == 0.3

        remaining["value"] = "5"
        await client.request("/c")
        assert client.pacing_delay() == 1.0
        assert client.rate_limit_status() == {"limit": 300, "remaining": 5, "request_count": 3}


async def test_pacing_waits_out_the_spacing_between_requests():
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={}, headers={"x-ratelimit-remaining": "1"})

    async with _client(handler, sleeps, spacing_seconds=(0.0, 0.0, 5.0)) as client:
        await client.request("/a")
        await client.request("/b")

    assert len(sleeps) == 1
    assert 4.0 < sleeps[0] <= 5.0


async def test_shared_quota_tracker():
    quota = QuotaTracker()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={}, headers={"x-ratelimit-remaining": "42"})

    first = _client(handler, quota=quota)
    second = _client(handler, quota=quota)
    async with first, second:
        await first.request("/a")
        assert second.quota.remaining == 42


def test_parse_quota_header():
    assert parse_quota_header("290/3000") == 290
    assert parse_quota_header(" 17 ") == 17
    assert parse_quota_header("unlimited") is None
    assert parse_quota_header(None) is None


def test_missing_credentials_are_fatal():
    with pytest.raises(FatalSetupFailure):
        RateLimitedClient("https://api.example.com", None)
    with pytest.raises(FatalSetupFailure):
        LightspeedClient("key", None)
    with pytest.raises(FatalSetupFailure):
        PicqerClient("", "https://x.picqer.com/api/v1")


async def test_picqer_search_accepts_both_response_shapes(picqer):
    picqer.add("8712345678906", 11, 12.5)
    picqer.add("8712345678906", 12, 13.0)

    async with picqer.client() as client:
        result = await client.search_by_ean("8712345678906")
        assert result.product.idproduct == 11
        assert result.multiple_results is True
        assert result.total_results == 2

        picqer.wrap_in_data = True
        wrapped = await client.search_by_ean("8712345678906")
        assert wrapped.product.idproduct == 11

        empty = await client.search_by_ean("0000000000000")
        assert empty.product is None
        assert empty.multiple_results is False

    auth = picqer.requests[0].headers["Authorization"]
    assert base64.b64decode(auth.removeprefix("Basic ")) == b"key:"


async def test_lightspeed_enrich_follows_links(lightspeed):
    lightspeed.add_product(1, "Designradiator Oslo", variants=[variant(10, " 8712345 678906 ")], images=["a.jpg", "b.jpg"], brand="Thermrad")

    async with lightspeed.client() as client:
        products = await client.get_products(page=1, limit=250)
        enriched = await client.enrich(products[0])

    assert enriched.brand == "Thermrad"
    assert [image.src for image in enriched.images] == ["a.jpg", "b.jpg"]
    assert enriched.variants[0].ean == "8712345678906"
    assert enriched.variants[0].price_incl == 19.95
    paths = [request.url.path for request in lightspeed.requests]
    assert "/nl/products/1/images.json" in paths


async def test_lightspeed_brand_failure_is_tolerated_but_variant_failure_is_not(lightspeed):
    lightspeed.add_product(1, "Radiator", variants=[variant(10, "8712345678906")], brand="Broken")
    lightspeed.failures["/nl/brands/900.json"] = httpx.Response(500, text="boom")

    async with lightspeed.client() as client:
        [product] = await client.get_products()
        enriched = await client.enrich(product)
        assert enriched.brand is None
        assert len(enriched.variants) == 1

        lightspeed.failures["/nl/products/1/variants.json"] = httpx.Response(503, text="down")
        with pytest.raises(UpstreamUnavailable):
            await client.enrich(product)


async def test_lightspeed_rejects_malformed_listing():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"products": [{"title": "no id"}]})

    client = LightspeedClient("key", "secret", transport=httpx.MockTransport(handler), spacing_seconds=(0.0, 0.0, 0.0))
    async with client:
        with pytest.raises(MalformedResponse):
            await client.get_products()


async def test_lightspeed_single_product_and_variant_lookup():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/nl/products/5.json":
            return httpx.Response(200, json={"product": {"id": 5, "title": "Badkamerradiator", "brand": False}})
        if request.url.path == "/nl/products/6.json":
            return httpx.Response(200, json={"error": "gone"})
        if request.url.path == "/nl/variants.json":
            return httpx.Response(200, json={"variants": [variant(50, "8712345678906", 99.0)]})
        return httpx.Response(404)

    client = LightspeedClient(
        "key", "secret", transport=httpx.MockTransport(handler), spacing_seconds=(0.0, 0.0, 0.0)
    )
    async with client:
        product = await client.get_product(5)
        [found] = await client.get_variants_by_ean("8712345678906")
        with pytest.raises(MalformedResponse):
            await client.get_product(6)

    assert product.id == 5
    assert product.title == "Badkamerradiator"
    assert product.brand is None
    assert found.id == 50
    assert found.price_incl == 99.0
    assert seen[1].url.params["ean"] == "8712345678906"
    assert str(seen[0].url).startswith("https://api.webshopapp.com/nl/")


async def test_picqer_get_product():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v1/products/101":
            return httpx.Response(200, json={"idproduct": 101, "name": "Thermostaat", "fixedstockprice": 12.5})
        return httpx.Response(200, json=["not", "a", "product"])

    client = PicqerClient("key", "https://x.picqer.com/api/v1", transport=httpx.MockTransport(handler), spacing_seconds=(0.0, 0.0, 0.0))
    async with client:
        product = await client.get_product(101)
        with pytest.raises(MalformedResponse):
            await client.get_product(102)

    assert product.idproduct == 101
    assert product.fixedstockprice == 12.5
