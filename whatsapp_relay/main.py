import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from whatsapp_relay.broadcast import Broadcaster
from whatsapp_relay.classifier import EventClassifier
from whatsapp_relay.config import Settings, get_settings
from whatsapp_relay.contacts import ContactStore
from whatsapp_relay.dispatcher import Dispatcher, WhatsAppDispatcher
from whatsapp_relay.engine import ReplyDecisionEngine, WebhookProcessor
from whatsapp_relay.errors import InvalidPayload, PersistenceError, ProviderError
from whatsapp_relay.ledger import DEFAULT_PAGE_SIZE, MessageLedger, clamp_pagination
from whatsapp_relay.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from whatsapp_relay.metrics import get_metrics, get_metrics_content_type, record_webhook_outcome
from whatsapp_relay.schemas import (
    BroadcastRequest,
    BroadcastResponse,
    ContactRenameRequest,
    ContactResponse,
    ContactsListResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    MessagesListResponse,
    SendInteractiveRequest,
    SendMessageRequest,
    SendMessageResponse,
    WebhookResponse,
)
from whatsapp_relay.storage import Store, create_store
from whatsapp_relay.templates import SAMPLE_INTERACTIVES, cta_url_interactive
from whatsapp_relay.utils import verify_hmac_signature


logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""
    settings: Settings
    store: Store
    dispatcher: Dispatcher
    ledger: MessageLedger
    contacts: ContactStore
    processor: WebhookProcessor
    broadcaster: Broadcaster


def build_services(settings: Settings, store: Store, dispatcher: Dispatcher, broadcaster_sleep=None) -> Services:
    ledger = MessageLedger(store)
    contacts = ContactStore(store)
    engine = ReplyDecisionEngine(
        ledger=ledger,
        contacts=contacts,
        dispatcher=dispatcher,
        business_id=settings.PHONE_NUMBER_ID,
        welcome_message=settings.WELCOME_MESSAGE,
        call_to_action=cta_url_interactive(settings.CTA_BODY, settings.CTA_DISPLAY_TEXT, settings.CTA_URL),
    )
    broadcaster_kwargs = {"sleep": broadcaster_sleep} if broadcaster_sleep else {}
    return Services(
        settings=settings,
        store=store,
        dispatcher=dispatcher,
        ledger=ledger,
        contacts=contacts,
        processor=WebhookProcessor(EventClassifier(settings.own_identities), engine),
        broadcaster=Broadcaster(
            ledger,
            contacts,
            dispatcher,
            business_id=settings.PHONE_NUMBER_ID,
            delay_seconds=settings.BROADCAST_DELAY_SECONDS,
            **broadcaster_kwargs,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    dispatcher: Optional[Dispatcher] = None,
    broadcaster_sleep=None,
) -> FastAPI:
    """
    Build the FastAPI application.

    The store and dispatcher are created from settings unless given, which
    lets tests run against an in-memory store and a fake provider.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    store = store or create_store(settings.DATABASE_URL)
    dispatcher = dispatcher or WhatsAppDispatcher(
        access_token=settings.WHATSAPP_ACCESS_TOKEN,
        phone_number_id=settings.PHONE_NUMBER_ID,
        base_url=settings.GRAPH_API_URL,
        api_version=settings.GRAPH_API_VERSION,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    services = build_services(settings, store, dispatcher, broadcaster_sleep)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        - Startup: create tables
        - Shutdown: close the provider client and the store
        """
        store.init_db()
        yield
        dispatcher.close()
        store.close()

    app = FastAPI(
        title="WhatsApp Relay",
        description="Webhook relay between the WhatsApp Cloud API and a message/contact store",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(f"Store failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "store unavailable"},
        )

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Whatsapp with Python and Webhooks"

    # =========================================================================
    # Health Check Routes
    # =========================================================================

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """Liveness probe - always returns 200 once the app is running."""
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    async def health_ready(response: Response, services: ServicesDep) -> HealthResponse:
        """
        Readiness probe - returns 200 only if the store is reachable and the
        schema is applied, otherwise 503.
        """
        if not services.store.ping():
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="not_ready",
                reason="Store not reachable or schema not applied"
            )
        return HealthResponse(status="ready")

    # =========================================================================
    # Webhook Routes
    # =========================================================================

    @app.get("/webhook", response_class=PlainTextResponse)
    async def verify_webhook(
        services: ServicesDep,
        hub_mode: Annotated[Optional[str], Query(alias="hub.mode")] = None,
        hub_challenge: Annotated[Optional[str], Query(alias="hub.challenge")] = None,
        hub_verify_token: Annotated[Optional[str], Query(alias="hub.verify_token")] = None,
    ):
        """Subscription handshake: echo the challenge when the verify token matches."""
        expected = services.settings.WEBHOOK_VERIFY_TOKEN
        if hub_mode and expected and hub_verify_token == expected:
            logger.info("Webhook verified")
            return PlainTextResponse(hub_challenge or "")
        logger.warning("Webhook verification rejected")
        return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)

    @app.post(
        "/webhook",
        response_model=WebhookResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Malformed webhook body"},
            401: {"model": ErrorResponse, "description": "Invalid signature"},
        }
    )
    async def webhook(
        request: Request,
        services: ServicesDep,
        x_hub_signature_256: Annotated[Optional[str], Header(alias="X-Hub-Signature-256")] = None,
    ) -> WebhookResponse:
        """
        Process one webhook delivery.

        - Verifies X-Hub-Signature-256 when APP_SECRET is configured
        - Rejects malformed bodies with 400 before any processing
        - Acknowledges with 200 even when the reply send fails, so the
          provider does not redeliver the whole event
        """
        raw_body = await request.body()
        logger.debug(f"Request body size: {len(raw_body)} bytes")

        app_secret = services.settings.APP_SECRET
        if app_secret and not verify_hmac_signature(raw_body, x_hub_signature_256, app_secret):
            logger.error("Invalid webhook signature")
            record_webhook_outcome("invalid_signature")
            log_webhook_data(request=request, result="invalid_signature")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="invalid signature"
            )

        try:
            payload = json.loads(raw_body)
            notification = services.processor.classifier.classify(payload)
        except (ValueError, InvalidPayload) as e:
            logger.error(f"Invalid webhook body: {e}")
            record_webhook_outcome("invalid_payload")
            log_webhook_data(request=request, result="invalid_payload")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid Request"
            )

        message_id = notification.message.provider_message_id if notification.message else None
        status_id = notification.status.provider_message_id if notification.status else None

        try:
            decisions = services.processor.handle(notification)
        except ProviderError as e:
            logger.error(
                f"Reply send failed for message {message_id}: {e}",
                extra={"provider_status": e.status_code, "provider_details": e.details},
            )
            record_webhook_outcome("reply_failed")
            log_webhook_data(request=request, result="reply_failed", message_id=message_id, status_id=status_id)
            return WebhookResponse(status="ok", result="reply_failed")

        record_webhook_outcome("processed")
        log_webhook_data(
            request=request,
            result="processed",
            message_id=message_id,
            status_id=status_id,
            decisions=[decision.name for decision in decisions],
        )
        return WebhookResponse(status="ok", result="processed")

    # =========================================================================
    # Outbound Routes
    # =========================================================================

    @app.post(
        "/send-message",
        response_model=SendMessageResponse,
        responses={502: {"model": ErrorResponse, "description": "Provider rejected the send"}},
    )
    def send_message(body: SendMessageRequest, services: ServicesDep) -> SendMessageResponse:
        """Send one text message, logged as a broadcast."""
        try:
            message_id = services.broadcaster.send_one(body.to, body.message)
        except ProviderError as e:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to send message: {e}"
            )
        return SendMessageResponse(success=True, message_id=message_id)

    @app.post(
        "/send-interactive",
        response_model=SendMessageResponse,
        responses={502: {"model": ErrorResponse, "description": "Provider rejected the send"}},
    )
    def send_interactive(body: SendInteractiveRequest, services: ServicesDep) -> SendMessageResponse:
        """Send a sample list or reply-buttons message, logged as a broadcast."""
        interactive = SAMPLE_INTERACTIVES[body.template]()
        try:
            message_id = services.broadcaster.send_interactive(body.to, interactive)
        except ProviderError as e:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to send message: {e}"
            )
        return SendMessageResponse(success=True, message_id=message_id)

    @app.post("/broadcast", response_model=BroadcastResponse)
    def broadcast(body: BroadcastRequest, services: ServicesDep) -> BroadcastResponse:
        """Send the same text to each recipient, pausing between sends."""
        sent, failed = services.broadcaster.broadcast(body.recipients, body.message)
        return BroadcastResponse(sent=sent, failed=failed)

    # =========================================================================
    # Ledger Routes
    # =========================================================================

    @app.get("/logs", response_model=MessagesListResponse)
    async def list_logs(
        services: ServicesDep,
        phone: Annotated[Optional[str], Query(description="Matches sender or recipient")] = None,
        kind: Annotated[Optional[str], Query(description="incoming | status | reply | broadcast")] = None,
        type_: Annotated[Optional[str], Query(alias="type", description="text | interactive | other")] = None,
        limit: Annotated[int, Query(description="Rows per page, capped at 200")] = DEFAULT_PAGE_SIZE,
        page: Annotated[int, Query(description="1-indexed page")] = 1,
    ) -> MessagesListResponse:
        """
        List ledger rows, newest first.

        Response:
            - page, limit: the pagination actually applied
            - total: rows matching filters (ignoring pagination)
            - data: rows on this page
        """
        page, limit = clamp_pagination(page, limit)
        logger.info(f"GET /logs: phone={phone}, kind={kind}, type={type_}, page={page}, limit={limit}")
        rows, total = services.ledger.query(phone=phone, kind=kind, type_=type_, page=page, limit=limit)

        return MessagesListResponse(
            page=page,
            limit=limit,
            total=total,
            data=[MessageResponse.model_validate(row) for row in rows],
        )

    # =========================================================================
    # Contact Routes
    # =========================================================================

    @app.get("/contacts", response_model=ContactsListResponse)
    async def list_contacts(
        services: ServicesDep,
        limit: Annotated[int, Query(description="Rows per page, capped at 200")] = DEFAULT_PAGE_SIZE,
        page: Annotated[int, Query(description="1-indexed page")] = 1,
    ) -> ContactsListResponse:
        page, limit = clamp_pagination(page, limit)
        rows, total = services.contacts.list(page=page, limit=limit)
        return ContactsListResponse(
            page=page,
            limit=limit,
            total=total,
            data=[ContactResponse.model_validate(row) for row in rows],
        )

    @app.get(
        "/contacts/{phone}",
        response_model=ContactResponse,
        responses={404: {"model": ErrorResponse}},
    )
    async def get_contact(phone: str, services: ServicesDep) -> ContactResponse:
        contact = services.contacts.get(phone)
        if contact is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")
        return ContactResponse.model_validate(contact)

    @app.patch("/contacts/{phone}", response_model=ContactResponse)
    async def rename_contact(phone: str, body: ContactRenameRequest, services: ServicesDep) -> ContactResponse:
        """Set the display name of a contact. Names are never taken from message content."""
        contact = services.contacts.rename(phone, body.name)
        return ContactResponse.model_validate(contact)

    # =========================================================================
    # Metrics Route
    # =========================================================================

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(
            content=get_metrics(),
            media_type=get_metrics_content_type()
        )


app = create_app()
