# Centralized pytest configuration file (fixtures, hooks, plugins, etc.)
from contextlib import asynccontextmanager

import httpx
import pytest
from asgi_lifespan import LifespanManager
from httpx import AsyncClient, ASGITransport

from task_gateway.config import FallbackMode, Settings
from task_gateway.main import create_app
from task_gateway.testing.fake_backend import make_backend_app

AUTH_URL = "http://auth:8082"
PROJECT_URL = "http://project:8083"
TASK_URL = "http://task:8084"
MONOLITH_URL = "http://monolith:8080"


def refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


def timed_out(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


#----Settings overrides for tests----
@pytest.fixture
def gateway_settings() -> Settings:
    return Settings(
        auth_service_url=AUTH_URL,
        project_service_url=PROJECT_URL,
        task_service_url=TASK_URL,
        monolith_url=MONOLITH_URL,
        probe_timeout=1.0,
    )


@pytest.fixture
def legacy_settings(gateway_settings: Settings) -> Settings:
    return gateway_settings.model_copy(update={"fallback_mode": FallbackMode.LEGACY})


@pytest.fixture
def backend_transports() -> dict[str, httpx.AsyncBaseTransport]:
    """One fake backend per service, reachable by its configured URL."""
    return {
        AUTH_URL: ASGITransport(app=make_backend_app("auth")),
        PROJECT_URL: ASGITransport(app=make_backend_app("project")),
        TASK_URL: ASGITransport(app=make_backend_app("task")),
        MONOLITH_URL: ASGITransport(app=make_backend_app("monolith")),
    }


@pytest.fixture
def open_gateway():
    """
    Returns a context manager yielding a client for a gateway built from the
    given settings, whose upstream traffic goes to the given transports.
    Hosts without a transport refuse connections.
    """
    @asynccontextmanager
    async def _open(settings: Settings, transports: dict[str, httpx.AsyncBaseTransport]):
        gateway_app = create_app(settings)
        upstream_client = AsyncClient(
            mounts=transports,
            transport=httpx.MockTransport(refused),
        )
        # Installed before startup so the lifespan keeps it
        gateway_app.state.http_client = upstream_client

        async with LifespanManager(gateway_app):
            # client with transport to gateway app
            gateway_transport = ASGITransport(app=gateway_app)
            async with AsyncClient(
                    transport=gateway_transport,
                    base_url="http://gateway") as client:
                yield client

        await upstream_client.aclose()

    return _open


@pytest.fixture
async def gateway_client(open_gateway, gateway_settings, backend_transports):
    """Gateway test client with every backend up."""
    async with open_gateway(gateway_settings, backend_transports) as client:
        yield client
