from __future__ import annotations

import json
from typing import Any

from nodehub.client_export.outbound import Outbound, drop_none, is_renderable

SELECTOR_TAG = "NodeHub"
DIRECT_TAG = "direct"


def _transport(ob: Outbound) -> dict[str, Any] | None:
    transport = ob.transport
    if transport == "ws":
        return {
            "type": "ws",
            "path": ob.text("path", default="/"),
            "headers": {"Host": ob.text("host")},
            "max_early_data": ob.get("max_early_data", 0),
            "early_data_header_name": ob.text("early_data_header", default="Sec-WebSocket-Protocol"),
        }
    if transport == "grpc":
        return {"type": "grpc", "service_name": ob.service_name}
    if transport == "h2":
        return {"type": "http", "host": [ob.text("host")], "path": ob.text("path", default="/")}
    if transport == "httpupgrade":
        return {"type": "httpupgrade", "host": ob.text("host"), "path": ob.text("path", default="/")}
    return None


def _tls(ob: Outbound, *, utls: bool, alpn: bool) -> dict[str, Any] | None:
    if not ob.has_tls:
        return None
    tls: dict[str, Any] = {"enabled": True, "server_name": ob.sni, "insecure": ob.allow_insecure}
    if utls:
        tls["utls"] = {"enabled": True, "fingerprint": ob.fingerprint}
    if ob.is_reality:
        tls["reality"] = {"enabled": True, "public_key": ob.public_key, "short_id": ob.short_id}
    elif alpn and ob.alpn():
        tls["alpn"] = ob.alpn()
    return tls


def singbox_outbound(ob: Outbound) -> dict[str, Any] | None:
    if not is_renderable(ob):
        return None

    family = ob.family
    out: dict[str, Any] = {
        "tag": ob.name,
        "type": family,
        "server": ob.address,
        "server_port": int(ob.port),
    }

    if family == "vless":
        out["uuid"] = ob.text("uuid")
        out["flow"] = ob.text("flow") or None
        out["tls"] = _tls(ob, utls=True, alpn=True)
        out["transport"] = _transport(ob)
    elif family == "trojan":
        out["password"] = ob.text("password")
        out["tls"] = _tls(ob, utls=True, alpn=True)
        out["transport"] = _transport(ob)
    elif family == "vmess":
        out["uuid"] = ob.text("uuid")
        out["alter_id"] = ob.get("alter_id", 0)
        out["security"] = ob.text("encryption", default="auto")
        out["tls"] = _tls(ob, utls=False, alpn=False)
        out["transport"] = _transport(ob)
    elif family == "shadowsocks":
        out["method"] = ob.text("method")
        out["password"] = ob.text("password")
    else:
        out["password"] = ob.text("password")
        out["up_mbps"] = ob.mbps("up_mbps")
        out["down_mbps"] = ob.mbps("down_mbps")
        # Hysteria2 runs over QUIC and always needs TLS.
        out["tls"] = {"enabled": True, "server_name": ob.text("sni"), "insecure": ob.allow_insecure}
        if ob.obfs:
            out["obfs"] = {"type": ob.obfs, "password": ob.text("obfs_password")}

    return drop_none(out)


def render_singbox(outbounds: list[Outbound]) -> str:
    nodes = [item for item in (singbox_outbound(ob) for ob in outbounds) if item is not None]
    document = {
        "outbounds": [
            {"tag": SELECTOR_TAG, "type": "selector", "outbounds": [item["tag"] for item in nodes] or [DIRECT_TAG]},
            *nodes,
            {"tag": DIRECT_TAG, "type": "direct"},
        ]
    }
    return json.dumps(document, ensure_ascii=False, indent=2)
