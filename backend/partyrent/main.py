"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from partyrent.core.config import settings
from partyrent.core.exceptions import PaymentError
from partyrent.core.logging import log_error, setup_logging
from partyrent.core.metrics import get_metrics, get_metrics_content_type, set_app_info
from partyrent.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from partyrent.modules.accounts.router import router as accounts_router
from partyrent.modules.fees.router import router as fees_router
from partyrent.modules.notification.router import router as notification_router
from partyrent.modules.payments.router import router as payments_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Party Rent Payments API

Payment core of the party rental marketplace: checkout, escrow, provider
payouts, refunds and PayPal connected-account onboarding.

### Authentication

All endpoints except `/health` and `/metrics` require a JWT Bearer token.

```
Authorization: Bearer <access_token>
```

### Errors

Every error response has the shape
`{"success": false, "code": "...", "error": "...", "details": {...}}`.
Clients branch on `code`.
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {"name": "health", "description": "Health check endpoints"},
        {"name": "payments", "description": "Checkout, capture and transaction lifecycle"},
        {"name": "paypal-accounts", "description": "Provider PayPal onboarding and status"},
        {"name": "fees", "description": "Platform fee settings (admin)"},
        {"name": "notifications", "description": "In-app notifications"},
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    if exc.status_code >= 500:
        log_error(logger, f"{exc.code}: {exc.message}", exc, path=request.url.path)
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "code": "VALIDATION_ERROR",
            "error": "Invalid request",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_error(logger, f"Unhandled error on {request.method} {request.url.path}", exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "code": "SERVER_ERROR",
            "error": "Internal server error",
            "details": {},
        },
    )


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


app.include_router(payments_router, prefix=settings.API_V1_PREFIX)
app.include_router(accounts_router, prefix=settings.API_V1_PREFIX)
app.include_router(fees_router, prefix=settings.API_V1_PREFIX)
app.include_router(notification_router, prefix=settings.API_V1_PREFIX)
