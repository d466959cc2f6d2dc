"""Request ID helper for error responses.

The observability middleware binds the request id into the logging context;
when the middleware is disabled the id falls back to the request state or the
incoming header.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from rooms_service.obs import logging as obs_logging


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
    rid = obs_logging.current_request_id()
    if rid:
        return rid
    if request is not None:
        rid = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    return rid or default
