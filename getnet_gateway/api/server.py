# api/server.py
# ============================================================================
# GETNET GATEWAY - FASTAPI SERVER
# ============================================================================
# HTTP surface of the gateway: checkout creation, the Getnet notification
# webhook, on-demand status queries, the cron batch trigger and health.
# ============================================================================

import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from getnet_gateway import __version__
from getnet_gateway.config import GatewayConfig
from getnet_gateway.container import GatewayContainer
from getnet_gateway.errors import (
    InvalidSignatureError,
    PaymentNotFoundError,
    PaymentValidationError,
    ProviderError,
)
from getnet_gateway.logging_config import configure_logging
from getnet_gateway.services.notifications import ProviderNotification
from getnet_gateway.services.payments import CreatePaymentRequest
from getnet_gateway.timeutil import iso_utc

logger = structlog.get_logger().bind(component="api")


def _container(request: Request) -> GatewayContainer:
    return request.app.state.container


def _payment_view(payment) -> Dict[str, Any]:
    return payment.model_dump(mode="json", exclude={"provider_response", "notifications"})


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    config: Optional[GatewayConfig] = None,
    container: Optional[GatewayContainer] = None,
) -> FastAPI:
    """Build the FastAPI app. A prebuilt container (tests) is used as-is."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = container.config if container else (config or GatewayConfig.from_env())
        configure_logging(cfg.log_level, cfg.log_json)

        app.state.container = container or GatewayContainer(cfg)
        await app.state.container.start()
        app.state.started_at = time.monotonic()
        logger.info("gateway_started", version=__version__, getnet_base_url=cfg.getnet_base_url)

        yield

        await app.state.container.close()
        logger.info("gateway_stopped")

    app = FastAPI(
        title="Getnet Gateway",
        description="Getnet checkout bridge with reliable merchant callbacks",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        return response

    # ========================================================================
    # HEALTH
    # ========================================================================

    @app.get("/health")
    async def health_check(request: Request):
        c = _container(request)
        try:
            database_ok = await c.database.ping() if c.database is not None else None
            retry_stats = await c.ledger.stats()
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            await c.events.log("HEALTH_CHECK_ERROR", {"error": str(e)}, severity="ERROR")
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "error": str(e)},
            )

        await c.events.log("HEALTH_CHECK", {"retry_callbacks": retry_stats}, severity="DEBUG")
        return {
            "status": "healthy",
            "version": __version__,
            "storage_backend": c.config.storage_backend,
            "database": database_ok,
            "retry_callbacks": retry_stats,
            "uptime_seconds": round(time.monotonic() - request.app.state.started_at, 3),
            "timestamp": iso_utc(c.clock()),
        }

    # ========================================================================
    # CHECKOUT
    # ========================================================================

    @app.post("/api/create-payment")
    async def create_payment(request: Request):
        c = _container(request)
        try:
            body = await request.json()
            payment_request = CreatePaymentRequest.model_validate(body)
        except (ValueError, ValidationError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid request body: {e}")

        try:
            result = await c.payment_service.create_payment(
                payment_request,
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
            )
        except PaymentValidationError as e:
            if e.missing_fields:
                return JSONResponse(
                    status_code=400,
                    content={"error": "Missing required fields", "required": e.missing_fields},
                )
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid reference", "message": str(e), "provided": e.provided},
            )
        except ProviderError as e:
            await c.events.log(
                "ERROR",
                {"context": "create_payment", "error": str(e), "status_code": e.status_code},
                severity="ERROR",
            )
            return JSONResponse(
                status_code=502,
                content={"error": "Error connecting to Getnet", "message": str(e)},
            )

        return result.model_dump()

    # ========================================================================
    # GETNET WEBHOOK
    # ========================================================================

    @app.post("/api/notification")
    async def notification(request: Request):
        c = _container(request)
        try:
            body = await request.json()
            parsed = ProviderNotification.model_validate(body)
        except (ValueError, ValidationError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid notification: {e}")

        try:
            transition = await c.notification_service.handle(parsed, raw=body)
        except InvalidSignatureError:
            raise HTTPException(status_code=400, detail="Invalid signature")
        except PaymentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

        return {
            "success": True,
            "requestId": str(parsed.requestId),
            "statusChanged": transition is not None,
            "transition": transition.model_dump(mode="json") if transition else None,
        }

    # ========================================================================
    # STATUS QUERY
    # ========================================================================

    @app.get("/api/payment-status/{request_id}")
    async def payment_status(request_id: str, request: Request):
        c = _container(request)
        payment = await c.payments.get(request_id)
        if not payment:
            await c.events.log(
                "ERROR",
                {"context": "status_query", "error": "payment_not_found"},
                request_id=request_id,
                severity="WARN",
            )
            raise HTTPException(status_code=404, detail=f"Payment not found: {request_id}")

        try:
            transition = await c.scheduler.reconcile_payment(payment, source="status_query")
        except ProviderError as e:
            await c.events.log(
                "ERROR",
                {"context": "status_query", "error": str(e), "status_code": e.status_code},
                request_id=request_id,
                severity="ERROR",
            )
            return JSONResponse(
                status_code=502,
                content={"error": "Error querying Getnet", "message": str(e)},
            )

        payment = await c.payments.get(request_id)
        await c.events.log(
            "STATUS_QUERY",
            {"status": payment.status.value, "status_changed": transition is not None},
            request_id=request_id,
        )
        return {
            "success": True,
            "payment": _payment_view(payment),
            "transition": transition.model_dump(mode="json") if transition else None,
            "events": [
                e.model_dump(mode="json", exclude={"request_id"})
                for e in await c.event_store.recent(limit=20, request_id=request_id)
            ],
        }

    # ========================================================================
    # CRON
    # ========================================================================

    @app.get("/api/cron/reconcile")
    async def cron_reconcile(
        request: Request,
        days: Optional[int] = Query(default=None),
        skip_reconciliation: bool = Query(default=False, alias="skipReconciliation"),
        skip_callbacks: bool = Query(default=False, alias="skipCallbacks"),
    ):
        c = _container(request)
        summary = await c.scheduler.run(
            days_back=days,
            skip_reconciliation=skip_reconciliation,
            skip_callback_retries=skip_callbacks,
        )
        content = summary.model_dump(mode="json")
        if not summary.success:
            return JSONResponse(status_code=500, content=content)
        return content

    return app


app = create_app()


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(
        "getnet_gateway.api.server:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        reload=os.getenv("ENV", "development") == "development",
        log_level="info",
    )
