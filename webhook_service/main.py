from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from datetime import datetime

from shared.utils import (
    get_db_client, settings, Settings, HealthResponse,
    UnauthorizedException, ServiceUnavailableException,
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import (
    setup_rate_limiting, SecurityHeadersMiddleware, limiter,
    verify_bearer_token, client_origin,
)

from webhook_service.ledger import Ledger, LedgerError, MongoLedger
from webhook_service.reconciliation import reconcile
from webhook_service.schemas import WebhookResponse, IgnoredResponse
from webhook_service.validation import parse_payload, normalize_payload

# Setup Logging
logger = setup_logging(settings.SERVICE_NAME, settings.LOG_LEVEL)

app = FastAPI(title="Webhook Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name=settings.SERVICE_NAME)

WEBHOOK_PATH = f"/api/{settings.GATEWAY_NAME}/webhook"

@app.exception_handler(UnauthorizedException)
async def unauthorized_handler(request: Request, exc: UnauthorizedException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)

@app.on_event("startup")
async def startup_db_client():
    if not settings.SEPAY_WEBHOOK_SECRET:
        logger.error("SEPAY_WEBHOOK_SECRET is not set, every webhook call will be rejected")
    ledger = MongoLedger(get_db_client(settings.MONGO_URL), settings)
    app.state.ledger = ledger
    await ledger.ensure_indexes()

@app.on_event("shutdown")
async def shutdown_db_client():
    ledger = getattr(app.state, "ledger", None)
    if ledger is not None:
        ledger.close()

# --- Dependencies ---
def get_settings() -> Settings:
    return settings

def current_ledger(request: Request) -> Ledger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise LedgerError("Ledger is not initialised")
    return ledger

async def verify_webhook_caller(request: Request, config: Settings = Depends(get_settings)):
    if verify_bearer_token(request.headers.get("authorization"), config.SEPAY_WEBHOOK_SECRET):
        return
    logger.warning(
        "[Webhook] Unauthorized attempt",
        extra={**client_origin(request), "path": request.url.path, "gateway": config.GATEWAY_NAME},
    )
    raise UnauthorizedException()

# --- Endpoints ---

@app.post(WEBHOOK_PATH, dependencies=[Depends(verify_webhook_caller)])
async def gateway_webhook(request: Request, config: Settings = Depends(get_settings)):
    """
    Balance-change callback from the payment gateway.

    Once the caller is authenticated the answer is always HTTP 200: the gateway
    redelivers on anything else, and redelivery is absorbed by the idempotency
    check instead. Failures show up as success=false and in the logs.
    """
    request_id = getattr(request.state, "request_id", None)
    log_extra = {"request_id": request_id, "gateway": config.GATEWAY_NAME}

    try:
        body = await request.json()
        payload = parse_payload(body)
        transfer = normalize_payload(payload)
        if transfer is None:
            logger.info("[Webhook] Ignored non-payment notification", extra=log_extra)
            return JSONResponse(status_code=200, content=IgnoredResponse().model_dump())

        log_extra.update({
            "transaction_id": transfer.transaction_id,
            "payment_code": transfer.payment_code,
            "amount_received": transfer.amount_received,
        })
        result = await reconcile(current_ledger(request), transfer, body, config)
    except Exception:
        logger.exception("[Webhook] Critical Error", extra=log_extra)
        content = WebhookResponse(success=False, error="Internal Server Error")
        return JSONResponse(status_code=200, content=content.model_dump(mode="json", exclude_none=True))

    logger.info(
        f"[Webhook] Process result: {result.status.value} - {result.message or ''}",
        extra={**log_extra, "outcome": result.status.value},
    )
    content = WebhookResponse(success=True, idempotency=result.status)
    return JSONResponse(status_code=200, content=content.model_dump(mode="json", exclude_none=True))

@app.get("/health", response_model=HealthResponse)
@limiter.limit("30/minute")
async def health_check(request: Request, config: Settings = Depends(get_settings)):
    ledger = getattr(request.app.state, "ledger", None)
    db_status = "connected" if ledger is not None and await ledger.ping() else "disconnected"

    if db_status != "connected":
        raise ServiceUnavailableException()

    return HealthResponse(
        service=config.SERVICE_NAME,
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
        dependencies={
            "webhook-secret": "configured" if config.SEPAY_WEBHOOK_SECRET else "missing",
        }
    )

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("webhook_service.main:app", host="0.0.0.0", port=8004)
