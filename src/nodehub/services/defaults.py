from __future__ import annotations

import secrets
from collections.abc import Callable, Mapping
from typing import Any

PROFILE_DEFAULT_PORTS: Mapping[tuple[str, str, str], int] = {
    ("vless", "tcp", "reality"): 49443,
    ("hysteria2", "udp", "tls"): 49444,
    ("shadowsocks2022", "tcp", "none"): 49445,
    ("vless", "ws", "tls"): 2053,
    ("trojan", "tcp", "tls"): 2087,
}

# Secret sizes in bytes; hex encoding doubles the length.
REALITY_PRIVATE_KEY_BYTES = 32
REALITY_SHORT_ID_BYTES = 8
PASSWORD_BYTES = 16
SS2022_PASSWORD_BYTES = 32


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def random_hex(nbytes: int) -> str:
    return secrets.token_hex(nbytes)


def _ensure(target: dict[str, Any], key: str, factory: Callable[[], Any]) -> None:
    if is_empty_value(target.get(key)):
        target[key] = factory()


def _norm(value: Any) -> str:
    return str(value or "").strip()


def apply_template_defaults(
    protocol: str | None,
    transport: str | None,
    tls_mode: str | None,
    defaults: Any,
) -> dict[str, Any]:
    """
    Fill missing template fields for a (protocol, transport, tls_mode) profile.

    Only empty fields are written: absent, None or blank strings. 0 and False are values.
    Running the result through again returns it unchanged.
    """
    result: dict[str, Any] = dict(defaults) if isinstance(defaults, Mapping) else {}
    p, t, tls = _norm(protocol), _norm(transport), _norm(tls_mode)

    default_port = PROFILE_DEFAULT_PORTS.get((p, t, tls))
    if default_port is not None:
        _ensure(result, "port", lambda: default_port)

    if p == "vless" and t == "ws" and tls == "tls":
        _ensure(result, "path", lambda: "/ws")
        _ensure(result, "host", lambda: "")

    if p == "vless" and tls == "reality":
        _ensure(result, "flow", lambda: "xtls-rprx-vision")
        _ensure(result, "server_name", lambda: "")
        _ensure(result, "reality_private_key", lambda: random_hex(REALITY_PRIVATE_KEY_BYTES))
        _ensure(result, "reality_short_id", lambda: random_hex(REALITY_SHORT_ID_BYTES))

    if p == "trojan":
        _ensure(result, "password", lambda: random_hex(PASSWORD_BYTES))
        _ensure(result, "sni", lambda: "")

    if p == "hysteria2":
        _ensure(result, "password", lambda: random_hex(PASSWORD_BYTES))
        _ensure(result, "obfs", lambda: "none")
        _ensure(result, "sni", lambda: "")

    if p == "shadowsocks2022":
        _ensure(result, "method", lambda: "2022-blake3-aes-128-gcm")
        _ensure(result, "password", lambda: random_hex(SS2022_PASSWORD_BYTES))

    return result


def filled_fields(before: Mapping[str, Any], after: Mapping[str, Any]) -> dict[str, Any]:
    """Keys whose value the engine set (new keys or previously empty ones that changed)."""
    out: dict[str, Any] = {}
    for key, value in after.items():
        if key not in before or before[key] != value:
            out[key] = value
    return out
