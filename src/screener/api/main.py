import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from screener.api.responses import fail, get_ws_runtime, ok
from screener.api.routers import indicators, screener
from screener.common.exceptions import ScreenerError
from screener.common.logging import setup_logging
from screener.config.settings import Settings, get_settings
from screener.realtime.protocol import ClientSession
from screener.runtime import ScreenerRuntime

"""Example requests:

# Point read and bulk read
curl "http://localhost:8000/indicators/AAPL"
curl "http://localhost:8000/indicators?limit=25"

# Batch read
curl -X POST "http://localhost:8000/indicators/batch" -H "Content-Type: application/json" -d '{"symbols": ["AAPL", "MSFT", "NVDA"]}'

# Trigger a refresh, then poll its job
curl -X POST "http://localhost:8000/indicators/refresh"
curl "http://localhost:8000/indicators/refresh/<jobId>"

# Run an ad-hoc screen
curl -X POST "http://localhost:8000/screener/run" -H "Content-Type: application/json" -d '{"conditions": [{"field": "rsi14", "operator": "between", "value": [20, 80]}], "sortBy": "volume", "sortOrder": "desc"}'

# Run a preset
curl "http://localhost:8000/screener/preset/oversold?page=1&pageSize=20"

# Live results (websocat)
echo '{"type": "subscribe", "payload": {"filterId": "topGainers"}}' | websocat ws://localhost:8000/ws
"""

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    if location:
        return f"Invalid argument: {location}: {message}"
    return f"Invalid argument: {message}"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ScreenerError)
    async def screener_error_handler(request: Request, exc: ScreenerError):
        return JSONResponse(status_code=exc.status_code, content=fail(exc.message))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=fail(_validation_message(exc)))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content=fail("Internal server error"))


def create_app(
    settings: Optional[Settings] = None, runtime: Optional[ScreenerRuntime] = None
) -> FastAPI:
    settings = settings or (runtime.settings if runtime else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if app.state.runtime is None:
            app.state.runtime = ScreenerRuntime(settings)
        try:
            await app.state.runtime.start()
        except Exception as e:
            logger.error("Failed to start screener runtime: %s", e)
            raise
        logger.info("Screener runtime initialized successfully")

        yield

        # Shutdown
        await app.state.runtime.stop()

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    register_exception_handlers(app)
    app.include_router(indicators.router)
    app.include_router(screener.router)

    @app.get("/health")
    async def health_check(request: Request):
        """Store, refresh and real-time status."""
        return ok(request.app.state.runtime.health())

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        runtime = get_ws_runtime(websocket)
        await websocket.accept()
        session = ClientSession(
            client_id=uuid.uuid4().hex,
            sink=websocket,
            coordinator=runtime.coordinator,
            registry=runtime.registry,
        )
        try:
            while True:
                text = await websocket.receive_text()
                await session.handle_text(text)
        except WebSocketDisconnect:
            pass
        finally:
            await session.close()

    return app


app = create_app()


def start():
    settings = get_settings()
    setup_logging(
        level=logging.DEBUG if settings.debug else settings.log_level,
        log_dir=settings.log_dir,
        file=settings.log_to_file,
        json_format=settings.log_json,
    )
    uvicorn.run(
        "screener.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )


if __name__ == "__main__":
    start()
