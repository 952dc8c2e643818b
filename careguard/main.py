import time
import logging
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from careguard.core.config import settings
from careguard.core.logging import setup_logging, request_id_ctx
from careguard.core.db import SessionLocal, init_models
from careguard.core.errors import CareGuardError
from careguard.api.router import api_router
from careguard.modules.monitor.middleware import security_monitor
from careguard.modules.monitor.service import SecurityMonitor
from careguard.platform.provider_registry import registry

logger = logging.getLogger(__name__)

def default_monitor() -> SecurityMonitor:
    return SecurityMonitor(
        SessionLocal,
        registry.identity_directory(),
        registry.record_directory(),
        bus=registry.event_bus(),
    )

def create_app(monitor: SecurityMonitor | None = None) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)
    app.state.monitor = monitor or default_monitor()

    # registered innermost first: request id → request log → security monitor → routes
    app.middleware("http")(security_monitor)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        formatted_process_time = f"{process_time:.2f}ms"

        logger.info(
            f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {formatted_process_time}"
        )

        return response

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id", "-")
        request_id_ctx.set(rid)
        response = await call_next(request)
        return response

    @app.exception_handler(CareGuardError)
    async def careguard_error_handler(request: Request, exc: CareGuardError):
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message}, headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"message": "An internal server error occurred."},
        )

    @app.on_event("startup")
    async def on_startup():
        await init_models()

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.monitor.drain()
        bus = registry.event_bus()
        close = getattr(bus, "close", None)
        if close:
            await close()

    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app

setup_logging()
app = create_app()
