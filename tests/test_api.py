import httpx
import pytest
from fastapi.testclient import TestClient

from concierge import plans
from concierge.api import GENERIC_ERROR, create_app
from concierge.catalog import CatalogAdapter
from concierge.models import ShopSettings
from concierge.orchestrator import ChatOrchestrator
from concierge.router import ResponseRouter
from tests.factories import SHOP, Recorder, catalog_payload, product_node


@pytest.fixture
def catalog_recorder():
    return Recorder(httpx.Response(200, json=catalog_payload([product_node(1), product_node(2)])))


@pytest.fixture
def orchestrator(store, settings_store, catalog_recorder):
    settings_store.save(ShopSettings(shop=SHOP, plan="STARTER", access_token="shpat_token",
                                     openai_api_key="sk-secret", primary_color="#123456"))
    return ChatOrchestrator(
        store=store,
        settings_store=settings_store,
        catalog=CatalogAdapter(catalog_recorder.client()),
        router=ResponseRouter(Recorder().client(), default_webhook_url=None, byok_webhook_url=None, api_key=None),
    )


@pytest.fixture
def client(orchestrator):
    return TestClient(create_app(orchestrator))


def chat(client, message, **context):
    context.setdefault("shopDomain", SHOP)
    return client.post("/chat", json={"userMessage": message, "context": context})


def test_chat_envelope(client):
    response = chat(client, "show me your bestsellers", sessionId="session_1")
    assert response.status_code == 200

    body = response.json()
    assert body["success"] is True
    assert body["sessionId"] == "session_1"
    assert body["messageType"] == "product_recommendation"
    assert len(body["recommendations"]) == 2
    assert body["recommendations"][0]["compareAtPrice"] is None
    assert set(body["analytics"]) == {
        "intentDetected", "sentiment", "confidence", "productsShown",
        "responseTime", "isSupportIntent", "isProductIntent",
    }
    for key in ("response", "message", "quickReplies", "suggestedActions", "confidence",
                "sentiment", "requiresHumanEscalation", "timestamp"):
        assert key in body


def test_shop_domain_from_header(client):
    response = client.post(
        "/chat",
        json={"userMessage": "What's your return policy?", "context": {}},
        headers={"X-Shopify-Shop-Domain": SHOP},
    )
    assert response.status_code == 200
    assert response.json()["messageType"] == "support"


@pytest.mark.parametrize("payload", [
    {"userMessage": "", "context": {"shopDomain": SHOP}},
    {"userMessage": "   ", "context": {"shopDomain": SHOP}},
    {"userMessage": "x" * 5001, "context": {"shopDomain": SHOP}},
    {"context": {"shopDomain": SHOP}},
    {"userMessage": "hi", "context": {"shopDomain": SHOP, "sessionId": "s" * 201}},
    {"userMessage": "hi", "context": {}},
    {"userMessage": "hi", "context": {"shopDomain": "not a domain!"}},
])
def test_validation_errors_are_400(client, payload, catalog_recorder):
    response = client.post("/chat", json=payload)
    assert response.status_code == 400
    assert catalog_recorder.count == 0


def test_max_length_message_is_accepted(client):
    assert chat(client, "x" * 5000).status_code == 200


def test_quota_exceeded_is_429(client, monkeypatch, catalog_recorder):
    monkeypatch.setitem(plans.PLANS, plans.STARTER, plans.PlanConfig(
        code=plans.STARTER, name="Starter Plan", price=25.0, max_conversations=1,
    ))
    assert chat(client, "hello", sessionId="one").status_code == 200

    response = chat(client, "show me your bestsellers", sessionId="two")

    assert response.status_code == 429
    body = response.json()
    assert body["messageType"] == "limit_exceeded"
    assert body["conversationsUsed"] == 1
    assert body["conversationLimit"] == 1
    assert body["currentPlan"] == "STARTER"
    assert body["upgradeAvailable"] is True
    assert catalog_recorder.count == 0


def test_internal_error_is_generic_500(client, orchestrator, monkeypatch):
    async def broken(incoming):
        raise RuntimeError("database exploded at line 42")

    monkeypatch.setattr(orchestrator, "handle", broken)
    response = chat(client, "hello")

    assert response.status_code == 500
    assert response.json()["detail"] == GENERIC_ERROR
    assert "exploded" not in response.text


def test_widget_settings_hide_secrets(client):
    response = client.get("/widget-settings", params={"shop": SHOP})
    assert response.status_code == 200
    settings = response.json()["settings"]
    assert settings["primaryColor"] == "#123456"
    assert "shpat_token" not in response.text
    assert "sk-secret" not in response.text


def test_usage_endpoint(client):
    chat(client, "hello", sessionId="one")
    usage = client.get("/usage", params={"shop": SHOP}).json()["usage"]
    assert usage["conversationsUsed"] == 1
    assert usage["conversationLimit"] == 1000


def test_health_and_root(client):
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["database"] == "ok"
    assert "/chat" in client.get("/").json()["endpoints"]


def test_cors_preflight(client):
    response = client.options("/chat", headers={
        "Origin": f"https://{SHOP}",
        "Access-Control-Request-Method": "POST",
    })
    assert response.status_code == 200


def test_product_click_is_tracked(client, store):
    chat(client, "show me your bestsellers", sessionId="session_1")

    response = client.post("/track-product-click", json={
        "productId": "gid://shopify/Product/2", "productTitle": "Product 2", "sessionId": "session_1", "shop": SHOP,
    })

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Product click tracked successfully"}
    assert store.personalization_context(SHOP, "session_1").recent_products[0] == "gid://shopify/Product/2"


def test_product_click_shop_from_header(client):
    response = client.post("/track-product-click", json={"productId": "p1"},
                           headers={"X-Shopify-Shop-Domain": SHOP})
    assert response.status_code == 200


@pytest.mark.parametrize("payload", [
    {"shop": SHOP},
    {"productId": "", "shop": SHOP},
    {"productId": "p1"},
    {"productId": "p1", "shop": "not a shop"},
])
def test_product_click_validation(client, payload):
    assert client.post("/track-product-click", json=payload).status_code == 400


def test_product_click_storage_failure_is_generic_500(client, store, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("db gone")

    monkeypatch.setattr(store, "track_product_click", broken)
    response = client.post("/track-product-click", json={"productId": "p1", "shop": SHOP})
    assert response.status_code == 500
    assert response.json()["detail"] == GENERIC_ERROR


def test_client_message_id_replays_instead_of_handling_twice(client, catalog_recorder):
    first = chat(client, "show me your bestsellers", sessionId="session_1", clientMessageId="m-1").json()
    again = chat(client, "show me your bestsellers", sessionId="session_1", clientMessageId="m-1").json()

    assert again["metadata"]["replayed"] is True
    assert again["message"] == first["message"]
    assert catalog_recorder.count == 1
