from __future__ import annotations

import base64
import json
from typing import Any, Callable
from urllib.parse import quote, urlencode

from nodehub.client_export.outbound import Outbound, is_renderable


def _q(s: str) -> str:
    # Share links expect URL-encoded fragments.
    return quote(s, safe="")


def _encode_query(params: dict[str, Any], *, safe: str = "/") -> str:
    # `path=/ws` is more interoperable than `%2Fws` for some clients.
    return urlencode(params, safe=safe)


def _b64(raw: str) -> str:
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _transport_params(ob: Outbound, params: dict[str, Any], *, ws_path: str = "/") -> None:
    transport = ob.transport
    if transport == "ws":
        params["host"] = ob.text("host")
        params["path"] = ob.text("path", default=ws_path)
    elif transport == "grpc":
        params["serviceName"] = ob.service_name
        if ob.family == "vless":
            params["mode"] = "multi" if ob.settings.get("multi_mode") else "gun"
    elif transport in {"h2", "httpupgrade"} and ob.family == "vless":
        params["host"] = ob.text("host")
        params["path"] = ob.text("path", default="/")


def vless_uri(ob: Outbound) -> str:
    params: dict[str, Any] = {
        "type": ob.transport or "tcp",
        "security": ob.tls_mode or "none",
        "encryption": "none",
    }
    _transport_params(ob, params)
    if ob.has_tls:
        params["sni"] = ob.sni
        params["fp"] = ob.fingerprint
    if ob.is_reality:
        params["pbk"] = ob.public_key
        params["sid"] = ob.short_id
        if ob.text("spider_x"):
            params["spx"] = ob.text("spider_x")
        if ob.text("flow"):
            params["flow"] = ob.text("flow")
    return f"vless://{ob.text('uuid')}@{ob.address}:{ob.port}?{_encode_query(params)}#{_q(ob.name)}"


def trojan_uri(ob: Outbound) -> str:
    params: dict[str, Any] = {
        "type": ob.transport or "tcp",
        "security": "tls" if ob.has_tls else "none",
    }
    _transport_params(ob, params, ws_path="/trojan-ws")
    if ob.has_tls:
        params["sni"] = ob.sni
        params["fp"] = ob.fingerprint
    return f"trojan://{ob.text('password')}@{ob.address}:{ob.port}?{_encode_query(params)}#{_q(ob.name)}"


def vmess_uri(ob: Outbound) -> str:
    alpn = ob.settings.get("alpn")
    payload: dict[str, Any] = {
        "v": "2",
        "ps": ob.name,
        "add": ob.address,
        "port": int(ob.port),
        "id": ob.text("uuid"),
        "aid": ob.get("alter_id", 0),
        "scy": ob.text("encryption", default="auto"),
        "net": ob.transport or "ws",
        "type": "none",
        "host": ob.text("host"),
        "path": ob.text("path", default="/"),
        "tls": "tls" if ob.has_tls else "",
        "sni": ob.text("sni", "host"),
        "fp": ob.text("fingerprint"),
        "alpn": ",".join(str(item) for item in alpn) if isinstance(alpn, list) else "",
    }
    if ob.transport == "grpc":
        payload["path"] = ob.service_name
        payload["type"] = "gun"
    return "vmess://" + _b64(json.dumps(payload, ensure_ascii=False, separators=(",", ":")))


def shadowsocks_uri(ob: Outbound) -> str:
    userinfo = _b64(f"{ob.text('method')}:{ob.text('password')}")
    return f"ss://{userinfo}@{ob.address}:{ob.port}#{_q(ob.name)}"


def hysteria2_uri(ob: Outbound) -> str:
    params: dict[str, Any] = {}
    if ob.text("sni"):
        params["sni"] = ob.text("sni")
    if ob.obfs:
        params["obfs"] = ob.obfs
        params["obfs-password"] = ob.text("obfs_password")
    # `?` is always written, even with no params.
    return f"hysteria2://{ob.text('password')}@{ob.address}:{ob.port}?{_encode_query(params)}#{_q(ob.name)}"


_BUILDERS: dict[str, Callable[[Outbound], str]] = {
    "vless": vless_uri,
    "trojan": trojan_uri,
    "vmess": vmess_uri,
    "shadowsocks": shadowsocks_uri,
    "hysteria2": hysteria2_uri,
}


def share_link(ob: Outbound) -> str | None:
    """A share URI for one outbound; None when the protocol is unsupported or credentials are missing."""
    if not is_renderable(ob):
        return None
    return _BUILDERS[ob.family](ob)


def render_v2ray(outbounds: list[Outbound]) -> str:
    links = [link for link in (share_link(ob) for ob in outbounds) if link]
    return _b64("\n".join(links))
