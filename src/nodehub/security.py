from __future__ import annotations

import hmac

from fastapi import Depends, Header

from nodehub.errors import ConfigError, UnauthorizedError
from nodehub.settings import Settings, get_settings


def constant_time_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def check_admin_key(provided: str | None, settings: Settings) -> None:
    expected = settings.admin_key
    if not expected:
        raise ConfigError("ADMIN_KEY is missing")
    key = (provided or "").strip()
    if not key or not constant_time_equals(key, expected):
        raise UnauthorizedError("Invalid admin key")


async def require_admin_key(
    x_admin_key: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    check_admin_key(x_admin_key, settings)


def extract_node_token(x_node_token: str | None, authorization: str | None) -> str | None:
    """
    Accepts either:
    - `X-Node-Token: <token>`
    - `Authorization: Bearer <token>`
    """
    if x_node_token:
        token = x_node_token.strip()
        if token:
            return token
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer":
            return value.strip() or None
    return None


async def node_token(
    x_node_token: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> str | None:
    return extract_node_token(x_node_token, authorization)
