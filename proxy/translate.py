# proxy/translate.py
"""Pure request/response translation between the caller and the LLM upstream.

Nothing here performs I/O; proxy.py wires these helpers around the httpx call.
"""
import json
import math
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import urlsplit

# Hop-by-hop fields plus the ones that target this proxy rather than upstream.
# content-length is recomputed by httpx once the body is re-serialized.
_STRIP_REQUEST_HEADERS = {
    "host", "content-length", "connection", "keep-alive", "proxy-connection",
    "transfer-encoding", "te", "trailer", "upgrade",
}
# Framing headers that no longer describe the body once httpx has decoded it.
_STRIP_RESPONSE_HEADERS = {
    "content-length", "content-encoding", "transfer-encoding", "connection", "keep-alive",
}
# CORS headers are owned by the proxy's CORSMiddleware.
_CORS_PREFIX = "access-control-"

JSON_TYPE = "application/json"
EVENT_STREAM_TYPE = "text/event-stream"

Headers = tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class JsonBody:
    value: Any


@dataclass(frozen=True)
class TextBody:
    text: str


@dataclass(frozen=True)
class BinaryBody:
    data: bytes


Body = JsonBody | TextBody | BinaryBody


def _charset(content_type: str) -> str:
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"')
    return "utf-8"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite JSON number: {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if math.isinf(value):
        raise ValueError(f"JSON number out of range: {text}")
    return value


def _load_json(raw: bytes) -> Any:
    # Only values that can be written back as strict JSON are accepted.
    return json.loads(raw, parse_float=_finite_float, parse_constant=_reject_constant)


def _dump_json(value: Any) -> bytes:
    return json.dumps(
        value, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def request_target(base: str, raw_path: str, query: str) -> bytes:
    """The request-target bytes for the upstream request line.

    Any path prefix on the base URL is kept as written, then the caller's
    path and query follow byte for byte.
    """
    target = urlsplit(base).path + raw_path
    if query:
        target += f"?{query}"
    return target.encode("latin-1")


def filter_request_headers(headers: Iterable[tuple[str, str]]) -> Headers:
    """Return the caller's headers minus host, content-length and hop-by-hop fields."""
    return tuple(
        (k, v) for k, v in headers if k.lower() not in _STRIP_REQUEST_HEADERS
    )


def filter_response_headers(headers: Iterable[tuple[str, str]]) -> Headers:
    """Return upstream headers minus CORS and framing headers."""
    return tuple(
        (k, v)
        for k, v in headers
        if not k.lower().startswith(_CORS_PREFIX)
        and k.lower() not in _STRIP_RESPONSE_HEADERS
    )


def parse_body(raw: bytes, content_type: str) -> Body | None:
    """Classify an inbound payload once, so later steps never inspect raw types.

    JSON that does not parse, or holds numbers strict JSON cannot express,
    and text in an unknown charset are kept as raw bytes and forwarded
    untouched.
    """
    if not raw:
        return None
    ctype = content_type.lower()
    if JSON_TYPE in ctype:
        try:
            return JsonBody(_load_json(raw))
        except (ValueError, RecursionError):
            return BinaryBody(raw)
    if ctype.startswith("text/"):
        try:
            return TextBody(raw.decode(_charset(content_type)))
        except (LookupError, UnicodeDecodeError):
            return BinaryBody(raw)
    return BinaryBody(raw)


def encode_body(method: str, body: Body | None, content_type: str) -> bytes | None:
    """Serialize the outbound body; GET and HEAD never carry one."""
    if method.upper() in ("GET", "HEAD") or body is None:
        return None
    if isinstance(body, JsonBody) and JSON_TYPE in content_type.lower():
        return _dump_json(body.value)
    if isinstance(body, TextBody):
        return body.text.encode(_charset(content_type))
    if isinstance(body, BinaryBody):
        return body.data
    # A structured value without a JSON content-type is still sent as JSON.
    return _dump_json(body.value)


def wants_stream(upstream_content_type: str, accept: str) -> bool:
    """True when either side of the exchange asks for Server-Sent Events."""
    return EVENT_STREAM_TYPE in upstream_content_type or EVENT_STREAM_TYPE in accept


def buffered_body(content: bytes, content_type: str) -> bytes:
    """Body for a buffered relay.

    JSON bodies are parsed and re-serialized; anything that fails to parse,
    or is not JSON, goes back as the upstream sent it.
    """
    if JSON_TYPE not in content_type.lower():
        return content
    try:
        return _dump_json(_load_json(content))
    except (ValueError, RecursionError):
        return content
