"""FastAPI routes for the purchasing service.

``POST /stripe`` is the single multiplexed entry point: the body's ``mode``
selects the operation. Webhooks and the offline continuation link have their
own endpoints.
"""

import structlog
from fastapi import APIRouter, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from purchasing.dispatch import Dispatcher
from purchasing.errors import PurchaseError
from purchasing.gateway import get_gateway
from purchasing.gateway.fake_adapter import FakeGateway
from purchasing.purchase.continuation import ContinuationSigner
from purchasing.purchase.webhook import WebhookProcessor
from purchasing.store import get_stores
from purchasing.utils.logging import get_environment

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"
    requires_action: bool = False
    capture_status: str = "succeeded"


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str
    requires_action: bool
    capture_status: str


@router.post("")
def invoke(body: dict) -> dict:
    """Run one ``mode`` against the configured databases."""
    return Dispatcher().dispatch(body)


def _webhook(payload: bytes, signature: str | None, connect: bool) -> dict:
    gateway = get_gateway()
    last_error: Exception | None = None
    for store in get_stores():
        processor = WebhookProcessor(store, gateway)
        try:
            if connect:
                return processor.handle_connect(payload, signature)
            return processor.handle(payload, signature)
        except PurchaseError as exc:
            logger.warning("webhook_failed", database=store.name, kind=exc.kind, error=exc.message)
            last_error = exc
    if last_error is None:
        raise PurchaseError("No database is configured.")
    raise last_error


@router.post("/webhook")
async def webhook(request: Request, stripe_signature: str | None = Header(default=None)) -> dict:
    """Platform webhook: intents, payment methods, customers, subscriptions."""
    return await run_in_threadpool(_webhook, await request.body(), stripe_signature, False)


@router.post("/webhook/connect")
async def webhook_connect(request: Request, stripe_signature: str | None = Header(default=None)) -> dict:
    """Connect webhook: connected-account updates."""
    return await run_in_threadpool(_webhook, await request.body(), stripe_signature, True)


@router.get("/continue")
def resume(token: str) -> RedirectResponse:
    """Landing page of the offline 3-D Secure link."""
    payload = ContinuationSigner().loads(token)
    gateway = get_gateway()
    dispatcher = Dispatcher(gateway=gateway)
    url = payload.get("failureUrl") or ""
    for store in dispatcher.stores:
        machine = dispatcher.services_for(store).machine
        try:
            url = machine.resume_continuation(token)
        except PurchaseError as exc:
            logger.warning("continuation_failed", database=store.name, kind=exc.kind, error=exc.message)
            continue
        break
    return RedirectResponse(url=url, status_code=302)


@router.post("/gateway/configure", response_model=GatewayConfigResponse)
def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if get_environment() == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
        requires_action=body.requires_action,
        capture_status=body.capture_status,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
        requires_action=gateway.requires_action,
        capture_status=gateway.capture_status,
    )


async def purchase_error_handler(request: Request, exc: PurchaseError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PurchaseError, purchase_error_handler)
