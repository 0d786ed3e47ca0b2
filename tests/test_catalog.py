import httpx
import pytest

from concierge import classifier
from concierge.catalog import SESSION_ERROR, TRANSIENT_ERROR, CatalogAdapter, build_query_variables
from concierge.classifier import classify
from concierge.personalization import UserPreferences
from tests.factories import SHOP, Recorder, catalog_payload, product_node, request_json

pytestmark = pytest.mark.anyio


async def test_fetches_and_maps_products():
    recorder = Recorder(httpx.Response(200, json=catalog_payload([product_node(1), product_node(2, compare_at="29.99")])))
    adapter = CatalogAdapter(recorder.client())

    result = await adapter.fetch_products(SHOP, classify("show me your bestsellers"), "shpat_token")

    assert result.ok
    assert [p.id for p in result.products] == ["gid://shopify/Product/1", "gid://shopify/Product/2"]
    second = result.products[1]
    assert second.compare_at_price == "29.99"
    assert second.to_public()["compareAtPrice"] == "29.99"
    assert second.image == "https://cdn.example.com/2.jpg"

    request = recorder.requests[0]
    assert str(request.url) == f"https://{SHOP}/admin/api/2024-10/graphql.json"
    assert request.headers["X-Shopify-Access-Token"] == "shpat_token"
    variables = request_json(request)["variables"]
    assert variables["first"] == 8
    assert variables["sortKey"] == "UPDATED_AT"
    assert variables["reverse"] is True


def test_query_variables_per_intent():
    assert build_query_variables(classify("Show me new arrivals"))["sortKey"] == "CREATED_AT"
    assert "tag:sale" in build_query_variables(classify("What products are on sale?"))["query"]
    search = build_query_variables(classify("I'm looking for red shoes"))
    assert "red shoes" in search["query"]
    assert search["sortKey"] == "RELEVANCE"


async def test_missing_token_is_a_session_error_without_a_request():
    recorder = Recorder()
    adapter = CatalogAdapter(recorder.client())

    result = await adapter.fetch_products(SHOP, classify("show me new arrivals"), None)

    assert result.error.kind == SESSION_ERROR
    assert result.products == []
    assert recorder.count == 0


@pytest.mark.parametrize("status", [401, 403])
async def test_auth_status_is_a_session_error(status):
    adapter = CatalogAdapter(Recorder(httpx.Response(status, json={"errors": "Unauthorized"})).client())
    result = await adapter.fetch_products(SHOP, classify("show me new arrivals"), "stale")
    assert result.error.is_session_error


async def test_graphql_token_error_is_a_session_error():
    body = {"errors": [{"message": "Invalid API key or access token (unrecognized login or wrong password)"}]}
    adapter = CatalogAdapter(Recorder(httpx.Response(200, json=body)).client())
    result = await adapter.fetch_products(SHOP, classify("I'm looking for red shoes"), "stale")
    assert result.error.kind == SESSION_ERROR


@pytest.mark.parametrize("response", [
    httpx.Response(503, text="unavailable"),
    httpx.Response(429, text="slow down"),
    httpx.Response(200, text="<html>not json</html>"),
    httpx.Response(200, json={"errors": [{"message": "Throttled"}]}),
    httpx.ReadTimeout("timed out"),
    httpx.ConnectError("connection refused"),
])
async def test_transient_failures(response):
    adapter = CatalogAdapter(Recorder(response).client())
    result = await adapter.fetch_products(SHOP, classify("show me new arrivals"), "token")
    assert not result.ok
    assert result.error.kind == TRANSIENT_ERROR
    assert result.products == []


async def test_out_of_stock_products_are_dropped():
    nodes = [product_node(1, inventory=0), product_node(2, inventory=3), product_node(3, inventory=None)]
    adapter = CatalogAdapter(Recorder(httpx.Response(200, json=catalog_payload(nodes))).client())
    result = await adapter.fetch_products(SHOP, classify("show me new arrivals"), "token")
    assert [p.id.rsplit("/", 1)[-1] for p in result.products] == ["2", "3"]


async def test_on_sale_keeps_discounted_items():
    nodes = [product_node(1, price="10.00"), product_node(2, price="10.00", compare_at="15.00")]
    adapter = CatalogAdapter(Recorder(httpx.Response(200, json=catalog_payload(nodes))).client())
    result = await adapter.fetch_products(SHOP, classify("what's on sale"), "token")
    assert classify("what's on sale").intent == classifier.ON_SALE
    assert [p.id for p in result.products] == ["gid://shopify/Product/2"]


async def test_malformed_nodes_are_skipped():
    nodes = [{"node": {"title": "no id"}}, product_node(7)]
    adapter = CatalogAdapter(Recorder(httpx.Response(200, json=catalog_payload(nodes))).client())
    result = await adapter.fetch_products(SHOP, classify("show me new arrivals"), "token")
    assert [p.title for p in result.products] == ["Product 7"]


@pytest.mark.parametrize("body", [
    {"data": "oops"},
    {"data": None},
    ["not", "an", "object"],
])
async def test_response_without_data_object_is_transient(body):
    adapter = CatalogAdapter(Recorder(httpx.Response(200, json=body)).client())
    result = await adapter.fetch_products(SHOP, classify("show me new arrivals"), "token")
    assert result.error.kind == TRANSIENT_ERROR
    assert result.products == []


@pytest.mark.parametrize("data", [
    {"products": "oops"},
    {"products": {"edges": "oops"}},
    {"products": {"edges": ["oops", None, {"node": "x"}, {"node": {"id": "1", "variants": ["bad"]}}]}},
])
async def test_oddly_shaped_products_never_raise(data):
    adapter = CatalogAdapter(Recorder(httpx.Response(200, json={"data": data})).client())
    result = await adapter.fetch_products(SHOP, classify("show me new arrivals"), "token")
    assert result.ok
    assert all(p.id == "1" for p in result.products)


async def test_bad_edges_do_not_hide_good_ones():
    nodes = ["oops", {"node": [1, 2]}, product_node(7)]
    adapter = CatalogAdapter(Recorder(httpx.Response(200, json=catalog_payload(nodes))).client())
    result = await adapter.fetch_products(SHOP, classify("show me new arrivals"), "token")
    assert [p.title for p in result.products] == ["Product 7"]


def test_recommendations_query_uses_newest_preferences():
    prefs = UserPreferences(favorite_categories=["scarves", "boots"], favorite_colors=["green"], styles=["boho"])
    variables = build_query_variables(classify("What do you recommend?"), preferences=prefs)
    assert variables["sortKey"] == "RELEVANCE"
    assert variables["query"].startswith("title:*boots*")
    assert 'tag:"scarves"' in variables["query"]
    assert 'tag:"green"' in variables["query"]
    assert "boho" not in variables["query"]

    plain = build_query_variables(classify("What do you recommend?"), preferences=UserPreferences())
    assert plain["query"] == "status:active"
    # preferences only steer recommendations
    bestsellers = build_query_variables(classify("show me your bestsellers"), preferences=prefs)
    assert bestsellers["query"] == "status:active"


async def test_unmatched_preferences_fall_back_to_the_general_query():
    recorder = Recorder(httpx.Response(200, json=catalog_payload([])),
                        httpx.Response(200, json=catalog_payload([product_node(1)])))
    adapter = CatalogAdapter(recorder.client())

    result = await adapter.fetch_products(SHOP, classify("What do you recommend?"), "shpat_token",
                                          preferences=UserPreferences(favorite_categories=["kayaks"]))

    assert [p.id for p in result.products] == ["gid://shopify/Product/1"]
    queries = [request_json(r)["variables"]["query"] for r in recorder.requests]
    assert "kayaks" in queries[0]
    assert queries[1] == "status:active"


async def test_matched_preferences_need_one_request():
    recorder = Recorder(httpx.Response(200, json=catalog_payload([product_node(1)])))
    adapter = CatalogAdapter(recorder.client())
    await adapter.fetch_products(SHOP, classify("What do you recommend?"), "shpat_token",
                                 preferences=UserPreferences(favorite_categories=["kayaks"]))
    assert recorder.count == 1
