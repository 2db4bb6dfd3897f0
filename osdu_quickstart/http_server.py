"""
Quickstart web application for the OSDU APIs:

    * Authenticate using OpenID Connect (authorization code flow)
      - try me: http://localhost:8080

    * Find a well using the Search API
      - try me: http://localhost:8080/find?wellname=A05-01

    * Fetch a trajectory using the Delivery API and object storage
      - try me: http://localhost:8080/fetch?srn=srn:file/csv:6dd13750df8611e9b5df4fa704076d5c:1
"""

import asyncio
import contextlib
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.middleware.sessions import SessionMiddleware

from osdu_quickstart.auth.discovery import fetch_provider_metadata
from osdu_quickstart.auth.oidc import authRouter, login_transactions_store
from osdu_quickstart.config import Settings
from osdu_quickstart.delivery import deliveryRouter
from osdu_quickstart.logging_util import configure_logging, get_logger
from osdu_quickstart.persistence import InMemoryProvider, ttl_cleanup_task
from osdu_quickstart.sdk.http_client import build_http_client
from osdu_quickstart.search import searchRouter
from osdu_quickstart.utils.exceptions import (
    DiscoveryError,
    QuickstartError,
    quickstart_error_handler,
    validation_exception_handler,
)


logger = get_logger(__name__)


def create_app(transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Build the application. `transport` replaces the network for every
    outbound call and exists for tests.
    """
    oidc_enabled = Settings.OIDC_ENABLED

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.http_client = build_http_client(transport)
        cleanup_task = None
        try:
            if oidc_enabled:
                # OSDU_AUTH_BASE_URL is used to discover the /authorize, /token
                # and /userinfo endpoints
                try:
                    app.state.provider = await fetch_provider_metadata(
                        app.state.http_client, Settings.OSDU_AUTH_BASE_URL
                    )
                except DiscoveryError:
                    logger.critical("Failed to discover provider details. Program will terminate.")
                    raise
                logger.info(
                    f"Provider details (discovered): authorization={app.state.provider.authorization_endpoint} "
                    f"token={app.state.provider.token_endpoint} userinfo={app.state.provider.userinfo_endpoint}"
                )
                if isinstance(login_transactions_store, InMemoryProvider):
                    cleanup_task = asyncio.create_task(ttl_cleanup_task(login_transactions_store))
            yield
        finally:
            if cleanup_task is not None:
                cleanup_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cleanup_task
            await app.state.http_client.aclose()

    app = FastAPI(title="OSDU Quickstart", lifespan=lifespan)
    app.add_middleware(
        SessionMiddleware,
        secret_key=Settings.SESSION_SECRET_KEY,
        https_only=Settings.SESSION_HTTPS_ONLY,
    )
    app.add_exception_handler(QuickstartError, quickstart_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    if oidc_enabled:
        app.include_router(authRouter, prefix="")
    app.include_router(searchRouter, prefix="")
    app.include_router(deliveryRouter, prefix="")
    return app


app = create_app()


def main():
    configure_logging(Settings.LOG_LEVEL, Settings.LOG_FILE)
    logger.info(f"listening on http://{Settings.HOST}:{Settings.PORT}/")
    uvicorn.run(app, host=Settings.HOST, port=Settings.PORT)


if __name__ == "__main__":
    main()
