import logging
from urllib.parse import quote_from_bytes

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from .config import BackendTarget

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = {
    b'connection',
    b'keep-alive',
    b'proxy-authenticate',
    b'proxy-authorization',
    b'te',
    b'trailers',
    b'transfer-encoding',
    b'upgrade',
}

# Bytes left as-is when re-quoting the raw path and query; everything else
# (non-ASCII, control characters, spaces) is percent-encoded.
PATH_SAFE = "/%:@!$&'()*+,;=-._~"
QUERY_SAFE = PATH_SAFE + "?"

# Responses that never carry a body (and so no content-length of their own)
BODYLESS_STATUSES = {204, 304}


def unavailable_response(target: BackendTarget) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={"error": f"Gateway: {target.label} service unavailable"},
    )


class Forwarder:
    """
    Relays an inbound request to a backend and the backend's answer back.

    The path and query string are sent unchanged (no prefix stripping);
    only the scheme and host are rewritten to the target's.
    """

    def build_headers(self, request: Request) -> list[tuple[bytes, bytes]]:
        headers = [
            (k, v) for k, v in request.headers.raw
            if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != b'host'
        ]  # host is filled in by httpx from the target URL

        original_host = request.headers.get("host")
        if original_host:
            headers.append((b'x-forwarded-host', original_host.encode("latin-1")))

        if request.client:
            prior = request.headers.get("x-forwarded-for")
            forwarded_for = f"{prior}, {request.client.host}" if prior else request.client.host
            headers = [(k, v) for k, v in headers if k.lower() != b'x-forwarded-for']
            headers.append((b'x-forwarded-for', forwarded_for.encode("latin-1")))

        return headers

    def build_url(self, request: Request, target: BackendTarget) -> httpx.URL:
        # Undecoded path, so %3F, %23 and %2F reach the backend as sent.
        # The query always comes from query_string.
        raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
        raw_path = raw_path.split(b"?", 1)[0]
        target_path = quote_from_bytes(raw_path, safe=PATH_SAFE).encode("ascii")

        query = request.scope.get("query_string", b"")
        if query:
            target_path += b"?" + quote_from_bytes(query, safe=QUERY_SAFE).encode("ascii")

        return httpx.URL(target.base_url).copy_with(raw_path=target_path)

    async def forward(self,
                      client: httpx.AsyncClient,
                      request: Request,
                      target: BackendTarget) -> Response:
        logger.info(
            "proxy method=%s path=%s backend=%s",
            request.method, request.url.path, target.name,
        )

        try:
            url = self.build_url(request, target)
        except httpx.InvalidURL as exc:
            logger.warning(
                "unforwardable URL: method=%s path=%r backend=%s error=%s",
                request.method, request.url.path, target.name, exc,
            )
            return JSONResponse(status_code=400, content={"error": "Gateway: invalid request URL"})

        outbound = client.build_request(
            request.method,
            url,
            headers=self.build_headers(request),
            content=await request.body(),
        )

        try:
            resp = await client.send(outbound, stream=True)
            try:
                # raw bytes, so encoded bodies are relayed as the backend sent them
                content = b"".join([chunk async for chunk in resp.aiter_raw()])
            finally:
                await resp.aclose()
        except httpx.HTTPError as exc:
            logger.warning(
                "%s service proxy error: method=%s path=%s backend_url=%s error=%r",
                target.label, request.method, request.url.path, target.base_url, exc,
            )
            return unavailable_response(target)

        head = request.method == "HEAD"
        return self.relay(resp, b"" if head else content, head=head)

    def relay(self, resp: httpx.Response, content: bytes, head: bool = False) -> Response:
        response = Response(content=content, status_code=resp.status_code)

        raw_headers = [
            (k, v) for k, v in resp.headers.raw
            if k.lower() not in HOP_BY_HOP_HEADERS
        ]
        has_length = any(k.lower() == b'content-length' for k, _ in raw_headers)
        if (not has_length
                and not head
                and resp.status_code >= 200
                and resp.status_code not in BODYLESS_STATUSES):
            raw_headers.append((b'content-length', str(len(content)).encode("latin-1")))

        response.raw_headers = raw_headers
        return response
