"""FastAPI application serving the account API to the launcher frontend."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mcaccounts import __version__
from mcaccounts.errors import (
    AccountError,
    AccountNotFound,
    IoFailure,
    NetworkFailure,
    ReauthenticationRequired,
    StoreCorrupt,
)
from mcaccounts.manager import AccountManager, get_manager

logger = logging.getLogger(__name__)

TOKEN_REFRESH_INTERVAL = 1800  # 30 minutes

# Most specific first; lookup walks this in order
ERROR_STATUS = (
    (AccountNotFound, status.HTTP_404_NOT_FOUND),
    (ReauthenticationRequired, status.HTTP_401_UNAUTHORIZED),
    (NetworkFailure, status.HTTP_502_BAD_GATEWAY),
    (IoFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StoreCorrupt, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def _build_allowed_origins(host: str, port: int) -> list[str]:
    """Build the CORS allowed origins list.

    >>> _build_allowed_origins("127.0.0.1", 8765)
    ['http://127.0.0.1:8765', 'http://localhost:8765', 'tauri://localhost']
    """
    return [f"http://{host}:{port}", f"http://localhost:{port}", "tauri://localhost"]


def status_for(exc: AccountError) -> int:
    """HTTP status for an account error.

    >>> status_for(AccountNotFound("x"))
    404
    >>> from mcaccounts.errors import InvalidRefreshToken, MalformedResponse
    >>> status_for(InvalidRefreshToken("x")), status_for(MalformedResponse("x"))
    (401, 502)
    """
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _token_refresh_loop(manager: AccountManager):
    """Background task to refresh expiring tokens every 30 minutes.

    Sleeps first (on-demand refresh covers startup), then runs indefinitely.
    Only logs when something actually happens.
    """
    while True:
        await asyncio.sleep(TOKEN_REFRESH_INTERVAL)
        try:
            result = await manager.refresh_expiring_tokens()
            if result["refreshed"] > 0 or result["failed"] > 0:
                logger.info(
                    "Token refresh: checked=%d, refreshed=%d, failed=%d",
                    result["checked"],
                    result["refreshed"],
                    result["failed"],
                )
        except Exception as e:
            logger.warning("Token refresh loop error: %s", e)


def create_app(manager: Optional[AccountManager] = None, *, background: bool = True) -> FastAPI:
    """Build the API app. Uses the process-wide manager unless one is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manager is not None:
            app.state.manager = manager
            try:
                manager.apply_token_recovery()
            except Exception as e:
                logger.debug("Token recovery at startup: %s", e)
        else:
            try:
                app.state.manager = get_manager()
                logger.info("Account store initialized")
            except Exception as e:
                logger.warning("Account store init failed: %s", e)
                app.state.manager = None

        refresh_task = None
        if background and app.state.manager is not None:
            refresh_task = asyncio.create_task(_token_refresh_loop(app.state.manager))
            logger.info("Started background token refresh (every 30min)")

        yield

        if refresh_task is not None:
            refresh_task.cancel()
            try:
                await refresh_task
            except asyncio.CancelledError:
                pass

    app = FastAPI(
        title="mc-accounts",
        description="Account and token lifecycle API for the launcher",
        version=__version__,
        lifespan=lifespan,
    )

    host = os.environ.get("MCACCOUNTS_HOST", "127.0.0.1")
    port = int(os.environ.get("MCACCOUNTS_PORT", "8765"))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_build_allowed_origins(host, port),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AccountError)
    async def account_error_handler(request: Request, exc: AccountError):
        code = status_for(exc)
        if code >= 500:
            logger.warning("%s failed: %s", exc.operation or request.url.path, exc)
        return JSONResponse(status_code=code, content={"error": exc.to_dict()})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {"message": "An internal error occurred", "code": "INTERNAL_ERROR"}
            },
        )

    from mcaccounts.api import routes

    app.include_router(routes.router, prefix="/api", tags=["accounts"])
    return app
