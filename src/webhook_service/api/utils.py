"""Helper utilities for API handlers."""
from __future__ import annotations

import hmac
import json
from typing import Any
from uuid import UUID

from aiohttp import web

from webhook_service.settings import settings


def json_error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse JSON body from request, raising HTTPBadRequest on invalid input."""
    try:
        data = await request.json()
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant: {name}")


async def read_raw_json(request: web.Request) -> tuple[bytes, Any]:
    """Return the raw body bytes together with the parsed JSON document.

    Any JSON value is accepted. A body that does not parse raises ``ValueError``,
    including the non-standard ``NaN``/``Infinity`` constants and documents nested
    too deeply for the parser.
    """
    raw = await request.read()
    try:
        return raw, json.loads(raw.decode("utf-8"), parse_constant=_reject_constant)
    except RecursionError as exc:
        raise ValueError("JSON document nested too deeply") from exc


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value if isinstance(value, str) else str(value))
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def optional_uuid_param(request: web.Request, name: str) -> UUID | None:
    raw = request.rel_url.query.get(name)
    return parse_uuid(raw, name) if raw else None


def limit_param(request: web.Request, *, default_limit: int = 100, max_limit: int = 1000) -> int:
    try:
        limit = int(request.rel_url.query.get("limit", str(default_limit)))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit must be an integer") from exc
    if limit <= 0:
        limit = default_limit
    return min(limit, max_limit)


def extract_bearer_token(request: web.Request) -> str:
    """Extract Bearer token from Authorization header.

    Raises web.HTTPUnauthorized if the header is missing or malformed.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise web.HTTPUnauthorized(reason="Authorization token is required")
    token = auth_header[len("Bearer "):].strip()
    if not token:
        raise web.HTTPUnauthorized(reason="Authorization token is required")
    return token


def require_admin(request: web.Request) -> None:
    """Gate the management API when ``admin_api_token`` is configured."""
    expected = settings.admin_api_token
    if not expected:
        return
    token = extract_bearer_token(request)
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise web.HTTPUnauthorized(reason="Invalid authorization token")
