"""AllTheWebhooks - FastAPI administration application.

Runs the webhook service alongside an HTTP surface for health, stats,
reload and test deliveries.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from . import __version__
from .api import router as webhooks_router
from .core.logging_config import setup_logging
from .webhooks.dispatcher import WebhookService, get_service, set_service


def create_app(service: Optional[WebhookService] = None, configure_logging: bool = False) -> FastAPI:
    """Build the admin application.

    Args:
        service: Service to manage; defaults to one loaded from the file
            named by ``ALLTHEWEBHOOKS_CONFIG``.
        configure_logging: Whether to call ``setup_logging`` on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_logging()
        if service is not None:
            set_service(service)
        else:
            set_service(WebhookService.from_config())
        get_service().start()
        try:
            yield
        finally:
            get_service().stop()

    app = FastAPI(
        title="AllTheWebhooks",
        description="Forwards game server events to HTTP webhooks.",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(webhooks_router)

    @app.get("/")
    def root() -> dict[str, str]:
        """Root endpoint returning service info.

        Returns:
            dict: Status and version.
        """
        return {
            "status": "ok",
            "message": "AllTheWebhooks admin API",
            "version": __version__,
            "docs": "/docs",
        }

    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint for monitoring and load balancers.

        Returns:
            dict: Health status indicator.
        """
        return {"status": "healthy"}

    return app
