# proxy/proxy.py
import logging
from typing import AsyncIterator

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

import translate

logger = logging.getLogger(__name__)

PROXY_FAILED = "Proxy request failed"
STREAMING_FAILED = "Streaming failed"


class RawTargetURL(httpx.URL):
    """An upstream URL whose request target goes on the wire exactly as given.

    httpx.URL resolves dot segments and percent-encodes some characters in
    the path and query. Transports build the request line from ``raw_path``,
    so overriding it keeps the caller's bytes intact.
    """

    def __init__(self, base: str, raw_target: bytes) -> None:
        super().__init__(base)
        self._raw_target = raw_target

    @property
    def raw_path(self) -> bytes:
        return self._raw_target

    def __str__(self) -> str:
        netloc = self.netloc.decode("ascii")
        return f"{self.scheme}://{netloc}{self._raw_target.decode('latin-1')}"


def _raw_target(request: Request) -> tuple[str, str]:
    """Return the caller's path and query string exactly as they arrived."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")
    return path, query


def _proxy_failed(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": PROXY_FAILED, "message": str(exc)},
    )


async def _send(request: Request, path: str, query: str) -> httpx.Response:
    settings = request.app.state.settings
    client: httpx.AsyncClient = request.app.state.http_client

    content_type = request.headers.get("content-type", "")
    body = translate.parse_body(await request.body(), content_type)

    upstream_req = client.build_request(
        method=request.method,
        url=settings.llm_server_url,
        headers=translate.filter_request_headers(request.headers.items()),
        content=translate.encode_body(request.method, body, content_type),
    )
    # Set after build_request, which would rebuild a plain httpx.URL.
    upstream_req.url = RawTargetURL(
        settings.llm_server_url,
        translate.request_target(settings.llm_server_url, path, query),
    )
    return await client.send(upstream_req, stream=True)


async def _relay(upstream_resp: httpx.Response) -> AsyncIterator[str]:
    """Yield decoded text chunks as upstream produces them.

    Runs until upstream closes and cannot be restarted. A failure after the
    first chunk propagates so the server aborts the connection; the upstream
    response is released however the loop ends.
    """
    try:
        async for chunk in upstream_resp.aiter_text():
            yield chunk
    except Exception:
        logger.exception("Streaming error")
        raise
    finally:
        await upstream_resp.aclose()


async def _stream(upstream_resp: httpx.Response, headers: translate.Headers) -> Response:
    content_type = upstream_resp.headers.get("content-type") or translate.EVENT_STREAM_TYPE
    try:
        response = StreamingResponse(_relay(upstream_resp), status_code=upstream_resp.status_code)
        for name, value in headers:
            response.headers.append(name, value)
        response.headers["content-type"] = content_type
        response.headers["cache-control"] = "no-cache"
        response.headers["connection"] = "keep-alive"
    except Exception:
        # Nothing has reached the caller yet, so a proper status is still possible.
        logger.exception("Streaming error")
        await upstream_resp.aclose()
        return JSONResponse(status_code=500, content={"error": STREAMING_FAILED})
    return response


async def _buffer(
    request: Request, upstream_resp: httpx.Response, headers: translate.Headers
) -> Response:
    try:
        content = await upstream_resp.aread()
    except Exception as exc:
        logger.exception("Proxy error: %s %s", request.method, request.url.path)
        return _proxy_failed(exc)
    finally:
        await upstream_resp.aclose()

    content_type = next((v for k, v in headers if k.lower() == "content-type"), "")
    response = Response(
        content=translate.buffered_body(content, content_type),
        status_code=upstream_resp.status_code,
    )
    for name, value in headers:
        response.headers.append(name, value)
    return response


async def forward(request: Request) -> Response:
    path, query = _raw_target(request)

    try:
        upstream_resp = await _send(request, path, query)
    except Exception as exc:
        logger.exception("Proxy error: %s %s", request.method, path)
        return _proxy_failed(exc)

    if upstream_resp.status_code >= 500:
        logger.error(
            "Upstream error %s for %s %s",
            upstream_resp.status_code, request.method, path,
        )

    headers = translate.filter_response_headers(upstream_resp.headers.multi_items())

    if translate.wants_stream(
        upstream_resp.headers.get("content-type", ""),
        request.headers.get("accept", ""),
    ):
        return await _stream(upstream_resp, headers)
    return await _buffer(request, upstream_resp, headers)
