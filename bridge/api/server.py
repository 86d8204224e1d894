from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.middleware.auth import BodySizeLimitMiddleware
from core.bridge import Bridge
from core.errors import BridgeError, EngineNotReady, InvalidArgument
from core.state import now_ms


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def create_app(bridge: Bridge) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await bridge.close()

    app = FastAPI(title="XiaoAI Bridge", version="1.0.0", lifespan=lifespan)
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=bridge.config.api.max_body_bytes)

    # Store references for route handlers
    app.state.bridge = bridge

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        return _error(400, f"Invalid request body: {exc.errors()}")

    @app.exception_handler(InvalidArgument)
    async def invalid_argument(request: Request, exc: InvalidArgument):
        return _error(400, str(exc))

    @app.exception_handler(EngineNotReady)
    async def engine_not_ready(request: Request, exc: EngineNotReady):
        return _error(503, str(exc))

    @app.exception_handler(BridgeError)
    async def bridge_error(request: Request, exc: BridgeError):
        logger.error("API request {} failed: {}", request.url.path, exc)
        return _error(500, str(exc))

    from api.routes.audio import build_router as audio_router
    from api.routes.control import build_router as control_router

    paths = bridge.config.api.paths
    app.include_router(control_router(paths))
    app.include_router(audio_router(paths))

    @app.get(paths.health)
    async def health():
        queue = bridge.queue.status
        speak = bridge.speech.status
        return {
            "ok": True,
            "status": "running",
            "ai_mode": bridge.conversation.ai_mode,
            "engine_ready": bridge.engine.is_ready,
            "tts_provider": bridge.tts.active_provider,
            "queue_depth": queue.depth,
            "last_task_type": queue.last_task_type,
            "last_task_finished_at": queue.last_task_finished_at,
            "last_task_error": queue.to_dict()["last_task_error"],
            "last_speak_mode": speak.last_speak_mode,
            "last_speak_at": speak.last_speak_at,
            "timestamp": now_ms(),
        }

    return app
