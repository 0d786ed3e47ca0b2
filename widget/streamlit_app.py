import asyncio
from typing import Any, Awaitable, Callable

import httpx
import streamlit as st

from widget import config
from widget.cart import StorefrontCart
from widget.controller import OFFLINE_QUEUED, WidgetController
from widget.storage import DurableStorage
from widget.transport import ChatTransport

st.set_page_config(
    page_title="Storefront Chat Widget",
    page_icon="🛍️",
    layout="wide"
)

if 'online' not in st.session_state:
    st.session_state.online = True
if 'last_action_result' not in st.session_state:
    st.session_state.last_action_result = None


def build_controller() -> WidgetController:
    # polling is pointless here; streamlit reruns the script on every interaction
    return WidgetController(
        transport=ChatTransport(config.CONCIERGE_URL, config.SHOP_DOMAIN),
        storage=DurableStorage(config.STORAGE_PATH),
        cart=StorefrontCart(config.STOREFRONT_URL) if config.STOREFRONT_URL else None,
        poll_interval=None,
    )


def with_controller(action: Callable[[WidgetController], Awaitable[Any]]):
    async def _run():
        controller = build_controller()
        controller.state.online = st.session_state.online
        await controller.start()
        try:
            result = await action(controller)
            return controller.state, result
        finally:
            await controller.close()

    return asyncio.run(_run())


async def _noop(controller: WidgetController):
    return None


def check_service() -> dict:
    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(f"{config.CONCIERGE_URL}/health")
            response.raise_for_status()
            return response.json()
    except httpx.TimeoutException:
        return {"status": "error", "message": "Request timed out"}
    except httpx.ConnectError:
        return {"status": "error", "message": "Connection failed - service may be down"}
    except httpx.HTTPError as e:
        return {"status": "error", "message": f"Request failed: {e}"}


# main UI
st.title("🛍️ Storefront Chat Widget")
st.markdown(f"*Shop: `{config.SHOP_DOMAIN}`*")

# sidebar
st.sidebar.header("Connection")
online = st.sidebar.toggle("Online", value=st.session_state.online)
if online != st.session_state.online:
    st.session_state.online = online
    if online:
        with st.spinner("Sending queued messages..."):
            with_controller(lambda c: c.set_online(True))
    st.rerun()

st.sidebar.header("Services")
with st.sidebar:
    if st.button("Check Status"):
        status = check_service()
        if status.get("status") == "healthy":
            st.success("🟢 Concierge OK")
        else:
            st.error(f"🔴 Concierge Down: {status.get('message', status.get('status'))}")

state, _ = with_controller(_noop)

tab1, tab2, tab3 = st.tabs(["💬 Chat", "📥 Offline Queue", "🛒 Cart"])

with tab1:
    theme = state.theme
    st.markdown(
        f"<div style='background:{theme['headerGradient']};color:white;padding:0.6rem 1rem;"
        f"border-radius:8px'>{state.settings.get('chatTitle', 'Support Chat')} · {theme['sentiment']}</div>",
        unsafe_allow_html=True,
    )

    if state.notification and state.phase == OFFLINE_QUEUED:
        st.info(state.notification)
    if state.error:
        st.error(state.error)
    if state.requires_human_escalation:
        st.warning("Would you like to talk to a member of our team?")

    for entry in state.transcript:
        with st.chat_message(entry.role):
            st.write(entry.display_text)
            for product in entry.recommendations:
                st.write(f"• **{product.get('title', 'Product')}** {product.get('price') or ''}")

    if state.quick_replies:
        cols = st.columns(len(state.quick_replies))
        for i, reply in enumerate(state.quick_replies):
            if cols[i].button(reply, key=f"quick_{i}"):
                with st.spinner("Sending..."):
                    with_controller(lambda c, text=reply: c.submit(text))
                st.rerun()

    for i, action in enumerate(state.suggested_actions):
        if st.button(action.get("label", "Action"), key=f"action_{i}"):
            _, result = with_controller(lambda c, a=action: c.perform_action(a))
            st.session_state.last_action_result = result
            st.rerun()

    if st.session_state.last_action_result:
        result = st.session_state.last_action_result
        if result.get("status") == "success":
            st.success(result.get("url") or "Done!")
        else:
            st.error(result.get("message", "Action failed"))

    if prompt := st.chat_input(state.settings.get("inputPlaceholder", "Type your message...")):
        with st.spinner("Sending..."):
            with_controller(lambda c: c.submit(prompt))
        st.rerun()

    if st.button("Clear Chat"):
        DurableStorage(config.STORAGE_PATH).remove(config.HISTORY_KEY)
        st.rerun()

with tab2:
    st.header("Offline Queue")
    queued = DurableStorage(config.STORAGE_PATH).get(config.QUEUE_KEY) or []
    if queued:
        st.info(f"{len(queued)} message(s) waiting to be sent")
        for item in queued:
            st.write(f"• {item.get('text')}")
    else:
        st.success("Nothing queued")

with tab3:
    st.header("Shopping Cart")
    if not config.STOREFRONT_URL:
        st.info("Set STOREFRONT_URL to load the storefront cart")
    elif st.button("Refresh Cart"):
        _, cart_result = with_controller(lambda c: c.cart.contents())
        if cart_result.get("status") == "success":
            items = cart_result["cart"].get("items", [])
            if items:
                for item in items:
                    st.write(f"**{item.get('title', 'Item')}** × {item.get('quantity', 1)}")
            else:
                st.info("Cart is empty - start shopping!")
        else:
            st.error(f"Can't load cart: {cart_result.get('message', 'Unknown error')}")

# footer
st.markdown("---")
