"""FastAPI application entry point."""

import logging
import time
from collections import defaultdict
from collections.abc import Callable

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from lumina_coach.analysis.client import AnalysisClient
from lumina_coach.api.routes import router
from lumina_coach.api.websocket import handle_browser_websocket
from lumina_coach.coach import get_analysis_client, get_store
from lumina_coach.config import Settings, get_settings
from lumina_coach.storage.state_store import SessionStore

logger = structlog.get_logger()


def configure_logging(production: bool) -> None:
    """JSON lines in production, console output otherwise."""
    if production:
        renderer = structlog.processors.JSONRenderer()
        level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        level = logging.DEBUG
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class ConnectionRateLimiter:
    """Sliding-window limit on new connections per client address.

    Args:
        limit: Connections allowed inside one window.
        window_seconds: Window length.
        clock: Time source, monotonic seconds.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._times: dict[str, list[float]] = defaultdict(list)

    def allow(self, client: str) -> bool:
        now = self._clock()
        times = self._times[client]
        times[:] = [t for t in times if now - t < self.window_seconds]
        if len(times) >= self.limit:
            return False
        times.append(now)
        return True


def create_app(settings: Settings) -> FastAPI:
    """Build the API, practice WebSocket and frontend for ``settings``."""
    app = FastAPI(title="Lumina Coach", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    ws_limiter = ConnectionRateLimiter(settings.ws_rate_limit, settings.ws_rate_window_seconds)
    app.state.ws_limiter = ws_limiter

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        """Optional APP_SECRET header check for API routes."""
        path = request.url.path
        if not settings.app_secret or not path.startswith("/api") or path == "/api/health":
            return await call_next(request)
        if request.headers.get("X-App-Secret", "") != settings.app_secret:
            logger.warning("api_unauthorized", path=path)
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return await call_next(request)

    @app.websocket("/ws")
    async def practice_websocket(
        websocket: WebSocket,
        store: SessionStore = Depends(get_store),
        analyzer: AnalysisClient = Depends(get_analysis_client),
    ) -> None:
        """Practice loop for one browser, rate limited per IP."""
        client_ip = websocket.client.host if websocket.client else "unknown"
        if not ws_limiter.allow(client_ip):
            logger.warning("ws_rate_limited", client=client_ip)
            await websocket.close(code=1008, reason="Rate limit exceeded")
            return
        await handle_browser_websocket(websocket, store, analyzer)

    # Mounted last so the API and WebSocket routes take precedence
    if settings.frontend_dir.is_dir():
        app.mount(
            "/", StaticFiles(directory=str(settings.frontend_dir), html=True), name="frontend"
        )
    return app


app = create_app(get_settings())


def main() -> None:
    """Run the application."""
    settings = get_settings()
    configure_logging(settings.is_production)
    logger.info("server_starting", host=settings.host, port=settings.port, env=settings.env)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
