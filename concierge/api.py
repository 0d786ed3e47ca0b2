import logging
import re
from contextlib import asynccontextmanager
from typing import Any, List, Optional
from urllib.parse import urlparse

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import text

from concierge import plans
from concierge.config import Config
from concierge.orchestrator import ChatOrchestrator, ConversationLimitExceeded, IncomingMessage

logger = logging.getLogger(__name__)

SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]*(\.[a-zA-Z0-9-]+)+$")
GENERIC_ERROR = "Sorry, I'm having trouble processing your request right now. Please try again later."
LIMIT_MESSAGE = ("This store has reached its monthly conversation limit. "
                 "Please contact the store owner or try again next month.")


class ChatContext(BaseModel):
    sessionId: Optional[str] = Field(default=None, max_length=200)
    customerId: Optional[str] = Field(default=None, max_length=100)
    previousMessages: Optional[List[Any]] = Field(default=None, max_length=50)
    shopDomain: Optional[str] = Field(default=None, max_length=255)
    locale: Optional[str] = Field(default=None, max_length=16)
    clientMessageId: Optional[str] = Field(default=None, max_length=100)


class ChatRequest(BaseModel):
    userMessage: str = Field(..., min_length=1, max_length=5000)
    context: ChatContext = Field(default_factory=ChatContext)

    @field_validator("userMessage")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message cannot be empty")
        return value


class ProductClickRequest(BaseModel):
    productId: str = Field(..., min_length=1, max_length=200)
    productHandle: Optional[str] = Field(default=None, max_length=255)
    productTitle: Optional[str] = Field(default=None, max_length=500)
    sessionId: Optional[str] = Field(default=None, max_length=200)
    shop: Optional[str] = Field(default=None, max_length=255)


def resolve_shop_domain(context: ChatContext, header_shop: Optional[str], origin: Optional[str]) -> str:
    """Shop comes from the request body, the shop header, or the storefront origin, in that order"""
    shop = context.shopDomain or header_shop
    if not shop and origin:
        shop = urlparse(origin).hostname
    if not shop:
        raise HTTPException(status_code=400, detail="Shop domain is required")
    shop = shop.strip().lower()
    if not SHOP_DOMAIN_RE.match(shop):
        raise HTTPException(status_code=400, detail="Invalid shop domain")
    return shop


def limit_exceeded_body(error: ConversationLimitExceeded) -> dict:
    quota = error.quota
    return {
        "success": False,
        "error": "Conversation limit reached",
        "response": LIMIT_MESSAGE,
        "message": LIMIT_MESSAGE,
        "messageType": "limit_exceeded",
        "conversationsUsed": quota.used,
        "conversationLimit": quota.limit,
        "currentPlan": quota.plan,
        "upgradeAvailable": error.upgrade is not None,
        "upgradePlan": error.upgrade.code if error.upgrade else None,
        "upgradeUrl": Config.UPGRADE_URL,
    }


def create_app(orchestrator: ChatOrchestrator) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.catalog.close()
        await orchestrator.router.close()

    app = FastAPI(title="Storefront Concierge", version=Config.VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
            for err in exc.errors()
        ]
        logger.info(f"Rejected invalid request to {request.url.path}: {details}")
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request", "details": details})

    @app.post("/chat")
    async def chat(request: ChatRequest, http_request: Request,
                   x_shopify_shop_domain: Optional[str] = Header(default=None)):
        shop = resolve_shop_domain(request.context, x_shopify_shop_domain, http_request.headers.get("origin"))
        incoming = IncomingMessage(
            text=request.userMessage.strip(),
            shop=shop,
            session_id=request.context.sessionId,
            customer_id=request.context.customerId,
            previous_messages=request.context.previousMessages or [],
            locale=request.context.locale,
            client_message_id=request.context.clientMessageId,
        )

        try:
            return await orchestrator.handle(incoming)
        except ConversationLimitExceeded as e:
            return JSONResponse(status_code=429, content=limit_exceeded_body(e))
        except Exception as e:
            logger.error(f"Chat error for {shop}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=GENERIC_ERROR)

    @app.post("/track-product-click")
    async def track_product_click(request: ProductClickRequest, http_request: Request,
                                  x_shopify_shop_domain: Optional[str] = Header(default=None)):
        shop = resolve_shop_domain(ChatContext(shopDomain=request.shop), x_shopify_shop_domain,
                                   http_request.headers.get("origin"))
        try:
            orchestrator.store.track_product_click(shop, request.productId, request.sessionId, request.productTitle)
        except Exception as e:
            logger.error(f"Click tracking failed for {shop}: {e}")
            raise HTTPException(status_code=500, detail=GENERIC_ERROR)
        return {"success": True, "message": "Product click tracked successfully"}

    @app.get("/widget-settings")
    async def widget_settings(shop: str):
        shop = resolve_shop_domain(ChatContext(shopDomain=shop), None, None)
        try:
            settings = orchestrator.settings_store.get(shop)
        except Exception as e:
            logger.error(f"Settings lookup failed for {shop}: {e}")
            raise HTTPException(status_code=500, detail=GENERIC_ERROR)
        return {"success": True, "settings": settings.public_view()}

    @app.get("/usage")
    async def usage(shop: str):
        shop = resolve_shop_domain(ChatContext(shopDomain=shop), None, None)
        try:
            settings = orchestrator.settings_store.get(shop)
            return {"success": True, "usage": orchestrator.store.usage_summary(shop, settings.plan)}
        except Exception as e:
            logger.error(f"Usage lookup failed for {shop}: {e}")
            raise HTTPException(status_code=500, detail=GENERIC_ERROR)

    @app.get("/health")
    async def health_check():
        try:
            with orchestrator.store.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            database_ok = True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            database_ok = False

        return {
            "status": "healthy" if database_ok else "degraded",
            "service": Config.SERVICE_NAME,
            "version": Config.VERSION,
            "database": "ok" if database_ok else "down",
            "plan_webhook": "configured" if orchestrator.router.default_webhook_url else "not configured",
        }

    @app.get("/")
    async def root():
        return {
            "service": "Storefront Concierge",
            "version": Config.VERSION,
            "status": "running",
            "description": "Shopper chat backend with intent routing and fallback replies",
            "plans": sorted(plans.PLANS),
            "endpoints": ["/chat", "/track-product-click", "/widget-settings", "/usage", "/health", "/docs"],
        }

    return app
