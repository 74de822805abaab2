# proxy/main.py
import logging
import socket
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

import proxy
from config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "llm-proxy-server"

_METHODS = [
    "GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD", "TRACE",
    # WebDAV and friends
    "PROPFIND", "PROPPATCH", "MKCOL", "COPY", "MOVE", "LOCK", "UNLOCK", "SEARCH",
]
_started = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Shared HTTP client — connection pools are reused across all proxy requests.
    # No timeout: a slow upstream keeps the caller's connection open.
    app.state.http_client = httpx.AsyncClient(timeout=None)
    logger.info("HTTP client initialised")

    yield

    await app.state.http_client.aclose()


app = FastAPI(title="LLM Proxy Server", version="1.0.0", lifespan=lifespan)
app.state.settings = settings

# Open policy: any origin is reflected and credentials are allowed.
# Narrow allow_origin_regex before exposing this beyond a trusted network.
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=".*",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.api_route("/health", methods=_METHODS)
async def health() -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "timestamp": now.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "uptime": time.monotonic() - _started,
    }


@app.api_route("/{path:path}", methods=_METHODS)
async def catchall(path: str, request: Request) -> Response:
    return await proxy.forward(request)


def _bind(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    return sock


def run() -> None:
    """Bind the listener and serve until the process is killed.

    Bind failures are fatal: they are logged and the process exits with 1.
    """
    try:
        sock = _bind(settings.host, settings.port)
    except OSError as exc:
        logger.error("Failed to bind %s:%s: %s", settings.host, settings.port, exc)
        sys.exit(1)

    logger.info("Proxy server listening on %s:%s", settings.host, settings.port)
    logger.info("Proxying to LLM server: %s", settings.llm_server_url)

    config = uvicorn.Config(
        app,
        log_level=settings.log_level.lower(),
        # Upstream's own date/server headers are relayed as-is.
        server_header=False,
        date_header=False,
    )
    uvicorn.Server(config).run(sockets=[sock])


if __name__ == "__main__":
    run()
