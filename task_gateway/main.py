import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import BackendRegistry, Settings, get_settings
from .health import HealthAggregator
from .middleware import AccessLogMiddleware
from .proxy import Forwarder
from .routing import Router

logger = logging.getLogger(__name__)

PROXY_METHODS = [
    "GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD", "TRACE", "CONNECT",
]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the gateway application.

    Backend URLs are validated here, so a bad configuration fails before the
    server binds its port (ConfigurationError).
    """
    settings = settings or get_settings()

    registry = BackendRegistry.from_settings(settings)
    router = Router.from_registry(registry, settings.fallback_mode, settings.health_path)
    forwarder = Forwarder()
    aggregator = HealthAggregator(
        registry, router, timeout=settings.probe_timeout, port=settings.gateway_port,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown logic."""
        #---- Startup ----
        if not hasattr(app.state, 'http_client'):
            app.state.http_client = httpx.AsyncClient(timeout=settings.proxy_timeout)

        for target in registry:
            logger.info("%s service at %s", target.label, target.base_url)
        if router.fallback:
            logger.info("Unmatched paths forwarded to %s", router.fallback.base_url)
        logger.info("Gateway health check at %s", settings.health_path)

        try:
            yield
        finally:
            #---- Shutdown ----
            if hasattr(app.state, 'http_client'):
                await app.state.http_client.aclose()

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(AccessLogMiddleware)

    app.state.settings = settings
    app.state.registry = registry
    app.state.route_table = router
    app.state.forwarder = forwarder
    app.state.health = aggregator

    @app.get(settings.health_path)
    async def health(request: Request):
        report = await request.app.state.health.check_health(request.app.state.http_client)
        return report.to_document()

    @app.api_route(path="/{path:path}", methods=PROXY_METHODS)
    async def proxy(path: str, request: Request):
        target = request.app.state.route_table.route("/" + path)
        if target is None:
            return JSONResponse(
                status_code=404,
                content={
                    "error": "Endpoint not found in microservices architecture",
                    "available_routes": request.app.state.route_table.available_routes(),
                },
            )

        return await request.app.state.forwarder.forward(
            request.app.state.http_client, request, target,
        )

    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    # raises ConfigurationError before the port is bound
    application = create_app(settings)
    uvicorn.run(
        application,
        host=settings.gateway_host,
        port=settings.gateway_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
