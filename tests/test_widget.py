import asyncio

import httpx
import pytest

from widget import config
from widget.cart import StorefrontCart
from widget.controller import (
    AWAITING_REPLY,
    IDLE,
    OFFLINE_QUEUED,
    PENDING_MARKER,
    SESSION_KEY,
    SettingsPoller,
    WidgetController,
)
from widget.history import ConversationCache
from widget.offline_queue import OfflineQueue
from widget.storage import DurableStorage
from widget.theme import NEGATIVE_COLOR, POSITIVE_COLOR, adjust_color, sentiment_theme
from widget.transport import ChatTransport, DeliveryError
from tests.factories import SHOP, Recorder, request_json

pytestmark = pytest.mark.anyio


def reply(message="Hi there!", **extra):
    body = {"message": message, "response": message, "sessionId": "session_server", "sentiment": "neutral",
            "quickReplies": ["Best sellers"], "suggestedActions": [], "recommendations": []}
    body.update(extra)
    return lambda request: httpx.Response(200, json=body)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def storage_path(tmp_path):
    return str(tmp_path / "widget.json")


def make_controller(recorder, storage_path, sleeper=None, **kwargs):
    transport = ChatTransport("http://concierge.test", SHOP, client=recorder.client(), sleep=sleeper or SleepRecorder())
    kwargs.setdefault("poll_interval", None)
    return WidgetController(transport, DurableStorage(storage_path), **kwargs)


async def test_online_submit_renders_reply(storage_path):
    recorder = Recorder(reply("Here are our best sellers", sentiment="positive"))
    controller = make_controller(recorder, storage_path)
    await controller.start()

    assert await controller.submit("show me your bestsellers")

    state = controller.state
    assert state.phase == IDLE
    assert [(e.role, e.content) for e in state.transcript] == [
        ("user", "show me your bestsellers"),
        ("assistant", "Here are our best sellers"),
    ]
    assert state.theme["accent"] == POSITIVE_COLOR
    assert state.quick_replies == ["Best sellers"]
    assert controller.session_id == "session_server"

    request = recorder.requests[0]
    assert request.headers["X-Shopify-Shop-Domain"] == SHOP
    assert request_json(request)["userMessage"] == "show me your bestsellers"
    await controller.close()


async def test_offline_submit_queues_without_network(storage_path):
    recorder = Recorder()
    controller = make_controller(recorder, storage_path)
    await controller.start()
    await controller.set_online(False)

    assert await controller.submit("first")
    assert await controller.submit("second")

    assert recorder.count == 0
    assert controller.state.phase == OFFLINE_QUEUED
    assert [item.text for item in controller.queue.items()] == ["first", "second"]
    assert all(e.pending for e in controller.state.transcript)
    assert controller.state.transcript[0].display_text == "first" + PENDING_MARKER

    stored = DurableStorage(storage_path).get(config.QUEUE_KEY)
    assert [item["text"] for item in stored] == ["first", "second"]


async def test_coming_online_flushes_in_order(storage_path):
    recorder = Recorder(reply("one"), reply("two"))
    controller = make_controller(recorder, storage_path)
    await controller.start()
    await controller.set_online(False)
    await controller.submit("first")
    await controller.submit("second")

    await controller.set_online(True)

    assert [request_json(r)["userMessage"] for r in recorder.requests] == ["first", "second"]
    assert len(controller.queue) == 0
    assert controller.state.phase == IDLE
    assert not any(e.pending for e in controller.state.transcript)
    assert [e.content for e in controller.state.transcript] == ["first", "one", "second", "two"]
    assert DurableStorage(storage_path).get(config.QUEUE_KEY) == []


async def test_flush_is_not_repeated_after_success(storage_path):
    recorder = Recorder(reply("done"))
    controller = make_controller(recorder, storage_path)
    await controller.start()
    await controller.set_online(False)
    await controller.submit("only once")
    await controller.set_online(True)

    assert await controller.flush_queue() == 0
    reloaded = make_controller(recorder, storage_path)
    await reloaded.start()
    assert await reloaded.flush_queue() == 0

    assert recorder.count == 1
    assert [e.content for e in reloaded.state.transcript].count("done") == 1


async def test_failed_flush_keeps_remaining_entries(storage_path):
    recorder = Recorder(reply("one"), lambda request: httpx.Response(503))
    controller = make_controller(recorder, storage_path)
    await controller.start()
    await controller.set_online(False)
    await controller.submit("first")
    await controller.submit("second")

    await controller.set_online(True)

    assert [item.text for item in controller.queue.items()] == ["second"]
    assert controller.state.phase == OFFLINE_QUEUED
    assert controller.state.transcript[-1].pending
    assert controller.state.error


async def test_queue_survives_reload(storage_path):
    controller = make_controller(Recorder(), storage_path)
    await controller.start()
    await controller.set_online(False)
    await controller.submit("written before the crash")

    reloaded = make_controller(Recorder(reply()), storage_path)
    await reloaded.start()

    assert reloaded.state.phase == OFFLINE_QUEUED
    assert [item.text for item in reloaded.queue.items()] == ["written before the crash"]
    assert reloaded.state.transcript[0].pending
    assert reloaded.session_id == controller.session_id


async def test_exhausted_retries_keep_the_text(storage_path):
    sleeper = SleepRecorder()
    recorder = Recorder(httpx.ConnectError("offline"))
    controller = make_controller(recorder, storage_path, sleeper)
    await controller.start()

    assert not await controller.submit("please deliver me")

    assert recorder.count == 3
    assert sleeper.delays == [1.0, 2.0]
    assert controller.state.phase == IDLE
    assert controller.state.draft == "please deliver me"
    assert controller.state.error
    assert controller.state.transcript == []


async def test_client_errors_are_not_retried(storage_path):
    recorder = Recorder(lambda request: httpx.Response(429, json={
        "message": "This store has reached its monthly conversation limit.",
        "messageType": "limit_exceeded",
    }))
    controller = make_controller(recorder, storage_path)
    await controller.start()

    assert await controller.submit("hello")

    assert recorder.count == 1
    assert controller.state.transcript[-1].message_type == "limit_exceeded"
    assert "monthly conversation limit" in controller.state.transcript[-1].content


async def test_send_is_locked_while_awaiting_reply(storage_path):
    release = asyncio.Event()
    seen = []

    async def slow(request):
        seen.append(controller.state.phase)
        await release.wait()
        return httpx.Response(200, json={"message": "eventually"})

    controller = make_controller(Recorder(slow), storage_path)
    await controller.start()

    first = asyncio.create_task(controller.submit("first"))
    while not seen:
        await asyncio.sleep(0)

    assert controller.state.phase == AWAITING_REPLY
    assert not controller.state.can_send
    assert not await controller.submit("second")

    controller.close_chat()
    release.set()
    assert await first
    assert seen == [AWAITING_REPLY]
    assert controller.state.transcript[-1].content == "eventually"
    assert not controller.state.chat_open


async def test_compose_and_toggle(storage_path):
    controller = make_controller(Recorder(), storage_path)
    controller.compose("hel")
    assert controller.state.phase == "Composing"
    controller.compose("")
    assert controller.state.phase == IDLE
    controller.toggle_chat()
    assert controller.state.chat_open
    assert not await controller.submit("   ")


async def test_overlong_message_is_refused_locally(storage_path):
    recorder = Recorder()
    controller = make_controller(recorder, storage_path)
    controller.compose("x" * 5001)
    assert not await controller.submit()
    assert recorder.count == 0
    assert controller.state.draft == "x" * 5001
    assert controller.state.error


async def test_listeners_see_state_changes(storage_path):
    phases = []
    controller = make_controller(Recorder(reply()), storage_path)
    controller.subscribe(lambda state: phases.append(state.phase))
    await controller.start()
    await controller.submit("hi")
    assert "Sending" in phases
    assert phases[-1] == IDLE


async def test_settings_poller_updates_and_stops(storage_path):
    calls = []

    async def fetch():
        calls.append(1)
        return {"primaryColor": "#112233"}

    updates = []
    poller = SettingsPoller(fetch, updates.append, interval=0.01)
    poller.start()
    while len(calls) < 3:
        await asyncio.sleep(0.01)
    task = poller.task
    await poller.stop()

    assert task.cancelled()
    assert updates == [{"primaryColor": "#112233"}]


async def test_controller_close_cancels_polling(storage_path):
    recorder = Recorder(lambda request: httpx.Response(200, json={"settings": {"primaryColor": "#112233"}}))
    controller = make_controller(recorder, storage_path, poll_interval=0.01)
    await controller.start()
    while not controller.state.settings:
        await asyncio.sleep(0.01)
    task = controller.poller.task

    await controller.close()

    assert task.done()
    assert controller.state.settings["primaryColor"] == "#112233"
    assert controller.state.theme["accent"] == "#112233"


def test_conversation_cache_caps_and_expires(tmp_path):
    now = [1_000_000.0]
    cache = ConversationCache(DurableStorage(str(tmp_path / "w.json")), clock=lambda: now[0])
    cache.save([{"role": "user", "content": str(i)} for i in range(15)])

    assert [m["content"] for m in cache.load()] == [str(i) for i in range(5, 15)]

    now[0] += 23 * 3600
    assert len(cache.load()) == 10
    now[0] += 2 * 3600
    assert cache.load() == []


def test_offline_queue_persists_each_mutation(tmp_path):
    path = str(tmp_path / "q.json")
    queue = OfflineQueue(DurableStorage(path))
    queue.enqueue("a")
    queue.enqueue("b")
    assert [i["text"] for i in DurableStorage(path).get(config.QUEUE_KEY)] == ["a", "b"]

    assert queue.remove_first().text == "a"
    assert [i["text"] for i in DurableStorage(path).get(config.QUEUE_KEY)] == ["b"]


def test_storage_ignores_corrupt_file(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    storage = DurableStorage(str(path))
    assert storage.get("anything") is None
    storage.set("k", 1)
    assert DurableStorage(str(path)).get("k") == 1


def test_sentiment_theme():
    assert sentiment_theme("positive")["accent"] == POSITIVE_COLOR
    assert sentiment_theme("negative", "#000000")["accent"] == NEGATIVE_COLOR
    assert sentiment_theme("neutral")["accent"] == config.DEFAULT_PRIMARY_COLOR
    assert sentiment_theme(None, "#336699")["accent"] == "#336699"
    assert sentiment_theme("confused")["sentiment"] == "neutral"
    assert adjust_color("#102030", -32) == "#000010"
    assert adjust_color("not-a-colour", 10) == "not-a-colour"


async def test_transport_delivery_error_after_server_errors():
    sleeper = SleepRecorder()
    transport = ChatTransport("http://concierge.test", SHOP,
                              client=Recorder(lambda request: httpx.Response(500)).client(), sleep=sleeper)
    with pytest.raises(DeliveryError) as excinfo:
        await transport.send("hi", session_id="s")
    assert not excinfo.value.rejected
    assert sleeper.delays == [1.0, 2.0]


async def test_cart_add_uses_numeric_variant_id():
    recorder = Recorder(lambda request: httpx.Response(200, json={"items": []}))
    cart = StorefrontCart("https://shop.example", recorder.client())

    result = await cart.add("gid://shopify/ProductVariant/4200", 2)

    assert result["status"] == "success"
    assert str(recorder.requests[0].url) == "https://shop.example/cart/add.js"
    assert request_json(recorder.requests[0]) == {"items": [{"id": "4200", "quantity": 2}]}


async def test_cart_errors_are_reported_not_raised():
    cart = StorefrontCart("https://shop.example", Recorder(httpx.ConnectError("nope")).client())
    assert (await cart.contents())["status"] == "error"


async def test_suggested_action_adds_to_cart(storage_path):
    cart_recorder = Recorder(lambda request: httpx.Response(200, json={"id": 1}))
    controller = make_controller(Recorder(), storage_path,
                                 cart=StorefrontCart("https://shop.example", cart_recorder.client()))
    result = await controller.perform_action({"action": "add_to_cart", "data": {"variantId": "gid://x/1", "quantity": 1}})
    assert result["status"] == "success"
    view = await controller.perform_action({"action": "view_product", "data": {"handle": "blue-hat"}})
    assert view["url"] == "https://shop.example/products/blue-hat"


async def test_first_message_adopts_the_server_session(storage_path):
    recorder = Recorder(reply("one"), reply("two"))
    controller = make_controller(recorder, storage_path)
    await controller.start()
    assert controller.session_id is None

    await controller.submit("hello")
    await controller.submit("again")

    sent = [request_json(r)["context"]["sessionId"] for r in recorder.requests]
    assert sent == [None, "session_server"]
    assert DurableStorage(storage_path).get(SESSION_KEY) == "session_server"
    assert make_controller(Recorder(), storage_path).session_id == "session_server"


async def test_online_messages_carry_fresh_client_ids(storage_path):
    recorder = Recorder(reply())
    controller = make_controller(recorder, storage_path)
    await controller.start()

    await controller.submit("first")
    await controller.submit("second")

    ids = [request_json(r)["context"]["clientMessageId"] for r in recorder.requests]
    assert all(ids)
    assert ids[0] != ids[1]


async def test_queued_message_keeps_its_id_across_reload(storage_path):
    controller = make_controller(Recorder(), storage_path)
    await controller.start()
    await controller.set_online(False)
    await controller.submit("written offline")
    queued_id = controller.queue.peek().id

    recorder = Recorder(reply("answered"))
    reloaded = make_controller(recorder, storage_path)
    await reloaded.start()
    await reloaded.flush_queue()

    assert request_json(recorder.requests[0])["context"]["clientMessageId"] == queued_id
    assert len(reloaded.queue) == 0


def test_queue_entries_without_ids_get_stable_ones(tmp_path):
    path = str(tmp_path / "q.json")
    DurableStorage(path).set(config.QUEUE_KEY, [{"text": "old entry", "enqueuedAt": 1}, {"text": 5}, "junk"])

    first = OfflineQueue(DurableStorage(path)).items()
    second = OfflineQueue(DurableStorage(path)).items()

    assert [i.text for i in first] == ["old entry"]
    assert first[0].id
    assert second[0].id == first[0].id


async def test_view_product_records_the_click(storage_path):
    recorder = Recorder(lambda request: httpx.Response(200, json={"success": True}))
    controller = make_controller(recorder, storage_path,
                                 cart=StorefrontCart("https://shop.example", Recorder().client()))
    controller.session_id = "session_server"

    result = await controller.perform_action({
        "action": "view_product",
        "data": {"productId": "gid://shopify/Product/7", "handle": "blue-hat"},
    })

    assert result == {"status": "success", "url": "https://shop.example/products/blue-hat"}
    assert recorder.requests[0].url.path == "/track-product-click"
    body = request_json(recorder.requests[0])
    assert body["productId"] == "gid://shopify/Product/7"
    assert body["sessionId"] == "session_server"
    assert body["shop"] == SHOP


async def test_click_tracking_failure_still_opens_the_product(storage_path):
    recorder = Recorder(httpx.ConnectError("offline"))
    controller = make_controller(recorder, storage_path,
                                 cart=StorefrontCart("https://shop.example", Recorder().client()))

    result = await controller.perform_action({
        "action": "view_product",
        "data": {"productId": "gid://shopify/Product/7", "handle": "blue-hat"},
    })

    assert result["url"] == "https://shop.example/products/blue-hat"
    assert recorder.count == 1
