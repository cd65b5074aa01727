"""HTTP middleware: request correlation and per-route CORS.

``request_id_middleware``:
- Accepts incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars for access throughout the request lifecycle
- Injects request_id and the request duration into response headers

``cors_middleware``:
- Applies a fixed CORS policy per route: the issuance endpoint is restricted
  to a single origin, the verification endpoint is open to any origin
- Headers are added to every response of those routes, errors included

Usage:
    app.middleware("http")(cors_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass

from fastapi import Request, Response

from keygate.core.config import settings
from keygate.core.logging import clear_request_id, set_request_id


@dataclass(frozen=True)
class CorsPolicy:
    allow_origin: str
    allow_methods: str
    allow_headers: str


def cors_policy_for(path: str) -> CorsPolicy | None:
    """Return the CORS policy for a request path, if the route has one."""
    normalized = path.rstrip("/") or "/"
    if normalized == "/keys":
        return CorsPolicy(
            allow_origin=settings.cors.keys_allowed_origin,
            allow_methods="POST, OPTIONS",
            allow_headers="Content-Type",
        )
    if normalized == "/verify":
        return CorsPolicy(
            allow_origin=settings.cors.verify_allowed_origin,
            allow_methods="POST, OPTIONS",
            allow_headers="Content-Type, X-API-Key",
        )
    return None


async def cors_middleware(request: Request, call_next) -> Response:
    response: Response = await call_next(request)

    policy = cors_policy_for(request.url.path)
    if policy is not None:
        response.headers["Access-Control-Allow-Origin"] = policy.allow_origin
        response.headers["Access-Control-Allow-Methods"] = policy.allow_methods
        response.headers["Access-Control-Allow-Headers"] = policy.allow_headers
    return response


async def request_id_middleware(request: Request, call_next) -> Response:
    """Generate or propagate the request correlation id.

    If the client provides the configured header (X-Request-ID by default),
    that value is used. Otherwise a new UUID is generated. The id is stored in
    contextvars for log correlation and echoed back with the request duration.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
