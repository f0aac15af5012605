"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import stock_history
from stock_history.api.deps import AppState, build_app_state
from stock_history.api.routes import router
from stock_history.core.config import StockHistoryConfig, load_config
from stock_history.core.exceptions import (
    InvalidInputError,
    NoDataError,
    StockHistoryError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    state: AppState | None = app.state._pending_state
    owned = state is None
    if state is None:
        state = await build_app_state(app.state._pending_config or load_config())

    app.state.app_state = state

    yield

    if owned:
        await state.close()


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message})


def create_app(
    config: StockHistoryConfig | None = None,
    state: AppState | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    A prebuilt `state` is used as-is and left open on shutdown; otherwise
    one is built from `config` (or the loaded configuration) and closed
    with the app.
    """
    app = FastAPI(
        title="Stock History API",
        description="Cached historical prices, price ratios and fundamentals",
        version=stock_history.__version__,
        lifespan=lifespan,
    )

    if config is None and state is not None:
        config = state.config

    # Stash config and state so lifespan can retrieve them
    app.state._pending_config = config
    app.state._pending_state = state

    origins = config.api.cors_origins if config is not None else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request parameters")

    @app.exception_handler(StockHistoryError)
    async def stock_history_exception_handler(request: Request, exc: StockHistoryError):
        if isinstance(exc, InvalidInputError):
            return _error(400, str(exc))
        if isinstance(exc, NoDataError):
            return _error(404, str(exc))
        logger.error("Request to %s failed: %s", request.url.path, exc)
        return _error(500, str(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return _error(500, "Internal server error")

    return app
