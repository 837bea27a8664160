"""
FastAPI application for TLS Expiry Monitor.
"""

import asyncio
import ipaddress
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from tls_expiry_monitor import __version__
from tls_expiry_monitor.config import Config
from tls_expiry_monitor.logger import get_logger
from tls_expiry_monitor.metrics import MetricsCollector
from tls_expiry_monitor.monitor import ExpiryMonitor

REDACTED_KEYS = ("compartment_id", "function_id", "oci_config_file", "allowed_ips")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan handler that suppresses CancelledError during shutdown."""
    try:
        yield
    except asyncio.CancelledError:
        pass


def is_ip_allowed(client_ip: str, allowed_ips: list) -> bool:
    """Check a client address against single addresses and CIDR blocks."""
    for allowed_ip in allowed_ips:
        try:
            if "/" in allowed_ip:
                if ipaddress.ip_address(client_ip) in ipaddress.ip_network(
                    allowed_ip, strict=False
                ):
                    return True
            elif client_ip == allowed_ip:
                return True
        except ValueError:
            continue
    return False


def create_app(
    monitor: ExpiryMonitor,
    metrics: MetricsCollector,
    config: Config,
    lifespan_override: Optional[Any] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        monitor: Check-run orchestrator
        metrics: Metrics collector instance
        config: Configuration instance

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="TLS Expiry Monitor",
        description="Concurrent TLS certificate expiry checks published as metrics",
        version=__version__,
        lifespan=lifespan_override or lifespan,
    )

    logger = get_logger("api")

    @app.middleware("http")
    async def ip_whitelist_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Middleware to enforce IP whitelisting."""
        if not config.enable_ip_whitelist:
            return await call_next(request)

        client_ip = request.client.host if request.client else None
        if not client_ip:
            logger.warning("Unable to determine client IP address, allowing request")
            return await call_next(request)

        if not is_ip_allowed(client_ip, config.allowed_ips):
            logger.warning(f"Access denied for IP address: {client_ip}")
            return JSONResponse(
                status_code=403,
                content={
                    "error": "Access forbidden",
                    "message": "Your IP address is not allowed to access this service",
                    "client_ip": client_ip,
                },
            )

        return await call_next(request)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def get_metrics() -> PlainTextResponse:
        try:
            return PlainTextResponse(
                content=metrics.get_metrics(), media_type=metrics.get_content_type()
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            raise HTTPException(status_code=500, detail="Failed to generate metrics") from e

    @app.get("/healthz", response_class=JSONResponse)
    async def get_health() -> JSONResponse:
        try:
            health_status = {
                **(await monitor.get_health_status()),
                **metrics.get_registry_status(),
                "sink": type(monitor.sink).__name__,
                "dry_run": config.dry_run,
                "status": "healthy",
                "version": __version__,
            }
            return JSONResponse(content=health_status)
        except Exception as e:
            logger.error(f"Failed to get health status: {e}")
            return JSONResponse(content={"status": "error", "error": str(e)}, status_code=500)

    @app.post("/check", response_class=JSONResponse)
    async def trigger_check() -> JSONResponse:
        try:
            logger.info("Manual check triggered via API")
            report = await monitor.run_once()
            return JSONResponse(content=report)
        except Exception as e:
            logger.error(f"Manual check failed: {e}")
            raise HTTPException(status_code=500, detail=f"Check failed: {e}") from e

    @app.get("/results", response_class=JSONResponse)
    async def get_results() -> JSONResponse:
        if monitor.last_report is None:
            return JSONResponse(content={"message": "No check has completed yet"}, status_code=404)
        return JSONResponse(content=monitor.last_report)

    @app.get("/config", response_class=JSONResponse)
    async def get_config() -> JSONResponse:
        config_dict: Dict[str, Any] = config.model_dump()
        for key in REDACTED_KEYS:
            if config_dict.get(key):
                config_dict[key] = "***REDACTED***"
        return JSONResponse(content=config_dict)

    return app
