from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class FallbackMode(str, Enum):
    NOT_FOUND = "not_found"
    LEGACY = "legacy"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Backend base URLs
    auth_service_url: str = "http://localhost:8082"
    project_service_url: str = "http://localhost:8083"
    task_service_url: str = "http://localhost:8084"
    monolith_url: str = "http://localhost:8080"

    # Unmatched paths: 404 or forward to the monolith
    fallback_mode: FallbackMode = FallbackMode.NOT_FOUND

    health_path: str = "/gateway/health"
    gateway_host: str = "0.0.0.0"
    gateway_port: int = 8081

    proxy_timeout: float = 20.0
    probe_timeout: float = 3.0

    log_level: str = "INFO"


class BackendTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    base_url: str

    @field_validator("base_url")
    @classmethod
    def check_base_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"invalid URL {value!r}: {exc}") from exc
        if url.scheme not in ("http", "https"):
            raise ValueError(f"URL {value!r} must use http or https")
        if not url.host:
            raise ValueError(f"URL {value!r} has no host")
        if url.query or url.fragment:
            raise ValueError(f"URL {value!r} must not carry a query or fragment")
        if url.path not in ("", "/"):
            # only scheme and host are rewritten when proxying
            raise ValueError(f"URL {value!r} must not carry a path")
        return value.rstrip("/")

    @property
    def label(self) -> str:
        """Human readable name used in error bodies, e.g. ``Auth``."""
        return self.name.capitalize()

    @property
    def service_name(self) -> str:
        if self.name == "monolith":
            return self.name
        return f"{self.name}-service"


class RouteRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefix: str
    target: BackendTarget


class BackendRegistry:
    """
    Immutable mapping of logical backend name to its target.

    Built once at startup; handlers only ever read from it.
    """
    def __init__(self, targets: Mapping[str, BackendTarget]):
        self._targets = MappingProxyType(dict(targets))

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendRegistry":
        urls = {
            "auth": settings.auth_service_url,
            "project": settings.project_service_url,
            "task": settings.task_service_url,
        }
        if settings.fallback_mode is FallbackMode.LEGACY:
            urls["monolith"] = settings.monolith_url

        targets = {}
        for name, url in urls.items():
            try:
                targets[name] = BackendTarget(name=name, base_url=url)
            except ValidationError as exc:
                raise ConfigurationError(
                    f"{name} backend misconfigured: {exc.errors()[0]['msg']}"
                ) from exc
        return cls(targets)

    def get(self, name: str) -> BackendTarget:
        return self._targets[name]

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __iter__(self):
        return iter(self._targets.values())

    def __len__(self) -> int:
        return len(self._targets)

    def urls(self) -> dict[str, str]:
        return {t.name: t.base_url for t in self._targets.values()}


@lru_cache
def get_settings() -> Settings:
    """Settings read from the environment, loaded on first use."""
    return Settings()
