import asyncio
import logging
from enum import Enum

import httpx
from pydantic import BaseModel, Field

from .config import BackendRegistry, BackendTarget
from .routing import Router

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"      # answered, but not with 200
    UNREACHABLE = "unreachable"  # did not answer at all


class HealthReport(BaseModel):
    backend_name: str
    status: HealthStatus


class CompositeHealthReport(BaseModel):
    gateway_status: str = "healthy"
    per_backend: dict[str, HealthReport] = Field(default_factory=dict)
    services: dict[str, str] = Field(default_factory=dict)
    routing: dict[str, str] = Field(default_factory=dict)
    fallback: str = "not_found"
    gateway_port: int | None = None

    def to_document(self) -> dict:
        doc: dict = {"gateway_status": self.gateway_status}
        for name, report in self.per_backend.items():
            doc[f"{name}_service_status"] = report.status.value
        doc["gateway_port"] = self.gateway_port
        doc["services"] = {f"{name}_service": url for name, url in self.services.items()}
        doc["routing"] = self.routing
        doc["fallback"] = self.fallback
        doc["message"] = "Microservices API Gateway"
        return doc


class HealthAggregator:
    """
    Probes every configured backend's ``/health`` concurrently.

    Each probe carries its own timeout; failures are folded into the report
    as status values and never raised to the caller.
    """
    def __init__(self,
                 registry: BackendRegistry,
                 router: Router,
                 timeout: float = 3.0,
                 port: int | None = None):
        self.registry = registry
        self.router = router
        self.timeout = timeout
        self.port = port

    async def probe(self, client: httpx.AsyncClient, target: BackendTarget) -> HealthReport:
        try:
            # overall deadline on top of httpx's per-phase timeouts
            resp = await asyncio.wait_for(
                client.get(f"{target.base_url}/health", timeout=self.timeout),
                timeout=self.timeout,
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            logger.warning("%s service health probe failed: %r", target.label, exc)
            return HealthReport(backend_name=target.name, status=HealthStatus.UNREACHABLE)

        if resp.status_code == 200:
            status = HealthStatus.HEALTHY
        else:
            logger.warning("%s service reported status %s", target.label, resp.status_code)
            status = HealthStatus.UNHEALTHY
        return HealthReport(backend_name=target.name, status=status)

    async def check_health(self, client: httpx.AsyncClient) -> CompositeHealthReport:
        targets = list(self.registry)
        reports = await asyncio.gather(*(self.probe(client, t) for t in targets))

        return CompositeHealthReport(
            per_backend={r.backend_name: r for r in reports},
            services=self.registry.urls(),
            routing=self.router.describe(),
            fallback=self.router.fallback.service_name if self.router.fallback else "not_found",
            gateway_port=self.port,
        )
