from typing import Iterable

from .config import BackendRegistry, BackendTarget, FallbackMode, RouteRule
from .errors import ConfigurationError

# Basic prefix matching, first declared rule wins.
# No trailing separator is required: "/auth" and "/auth/login" both match "/auth".
DEFAULT_ROUTES = (
    ("/auth", "auth"),
    ("/projects", "project"),
    ("/tasks", "task"),
)


class Router:
    def __init__(self,
                 rules: Iterable[RouteRule],
                 fallback: BackendTarget | None = None,
                 extra_routes: Iterable[str] = ()):
        self.rules = tuple(rules)
        self.fallback = fallback
        self.extra_routes = tuple(extra_routes)

    @classmethod
    def from_registry(cls,
                      registry: BackendRegistry,
                      mode: FallbackMode = FallbackMode.NOT_FOUND,
                      health_path: str | None = None) -> "Router":
        rules = []
        for prefix, name in DEFAULT_ROUTES:
            if name not in registry:
                raise ConfigurationError(f"route {prefix} targets unknown backend {name!r}")
            rules.append(RouteRule(prefix=prefix, target=registry.get(name)))

        fallback = None
        if mode is FallbackMode.LEGACY:
            if "monolith" not in registry:
                raise ConfigurationError("legacy fallback requires a monolith backend")
            fallback = registry.get("monolith")

        extra = (health_path,) if health_path else ()
        return cls(rules, fallback=fallback, extra_routes=extra)

    def route(self, path: str) -> BackendTarget | None:
        for rule in self.rules:
            if path.startswith(rule.prefix):
                return rule.target
        return self.fallback

    def available_routes(self) -> list[str]:
        return [f"{rule.prefix}/*" for rule in self.rules] + list(self.extra_routes)

    def describe(self) -> dict[str, str]:
        """Routing table as shown on the health endpoint."""
        return {f"{rule.prefix}/*": rule.target.service_name for rule in self.rules}
