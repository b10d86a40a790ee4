import logging
import time

logger = logging.getLogger("task_gateway.access")


class AccessLogMiddleware:
    """Logs one line per HTTP request: method, path, status and latency."""
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "[GATEWAY] %s %s %d %.1fms",
                scope["method"], scope["path"], status_code, latency_ms,
            )
