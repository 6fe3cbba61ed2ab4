from __future__ import annotations

from typing import Any

from nodehub.client_export import yaml_emitter
from nodehub.client_export.outbound import Outbound, is_renderable

GROUP_NAME = "NodeHub"


def _ws_opts(ob: Outbound, *, default_path: str = "/") -> dict[str, Any] | None:
    if ob.transport != "ws":
        return None
    return {"path": ob.text("path", default=default_path), "headers": {"Host": ob.text("host")}}


def _grpc_opts(ob: Outbound) -> dict[str, Any] | None:
    if ob.transport != "grpc":
        return None
    return {"grpc-service-name": ob.service_name}


def clash_proxy(ob: Outbound) -> dict[str, Any] | None:
    if not is_renderable(ob):
        return None

    base: dict[str, Any] = {"name": ob.name, "server": ob.address, "port": int(ob.port)}
    family = ob.family

    if family == "vless":
        reality = None
        if ob.is_reality:
            reality = {"public-key": ob.public_key, "short-id": ob.short_id}
        return {
            **base,
            "type": "vless",
            "uuid": ob.text("uuid"),
            "tls": ob.has_tls,
            "skip-cert-verify": ob.allow_insecure,
            "servername": ob.sni,
            "network": ob.transport or "ws",
            "flow": ob.text("flow") or None,
            "client-fingerprint": ob.fingerprint,
            "ws-opts": _ws_opts(ob),
            "grpc-opts": _grpc_opts(ob),
            "reality-opts": reality,
        }

    if family == "trojan":
        return {
            **base,
            "type": "trojan",
            "password": ob.text("password"),
            "sni": ob.text("sni"),
            "skip-cert-verify": ob.allow_insecure,
            "network": ob.transport or "tcp",
            "client-fingerprint": ob.fingerprint,
            "ws-opts": _ws_opts(ob, default_path="/trojan-ws"),
            "grpc-opts": _grpc_opts(ob),
        }

    if family == "vmess":
        return {
            **base,
            "type": "vmess",
            "uuid": ob.text("uuid"),
            "alterId": ob.get("alter_id", 0),
            "cipher": ob.text("encryption", default="auto"),
            "tls": ob.has_tls,
            "skip-cert-verify": ob.allow_insecure,
            "servername": ob.sni,
            "network": ob.transport or "ws",
            "ws-opts": _ws_opts(ob),
            "grpc-opts": _grpc_opts(ob),
        }

    if family == "shadowsocks":
        return {**base, "type": "ss", "cipher": ob.text("method"), "password": ob.text("password")}

    return {
        **base,
        "type": "hysteria2",
        "password": ob.text("password"),
        "sni": ob.text("sni"),
        "up": f"{ob.mbps('up_mbps')} Mbps",
        "down": f"{ob.mbps('down_mbps')} Mbps",
        "obfs": ob.obfs or None,
        "obfs-password": ob.text("obfs_password") or None,
    }


def render_clash(outbounds: list[Outbound], *, name: str = "") -> str:
    proxies = [proxy for proxy in (clash_proxy(ob) for ob in outbounds) if proxy is not None]
    config = {
        "proxies": proxies,
        "proxy-groups": [
            {
                "name": GROUP_NAME,
                "type": "select",
                "proxies": [proxy["name"] for proxy in proxies] or ["DIRECT"],
            }
        ],
        "rules": [f"MATCH,{GROUP_NAME}"],
    }
    # Comment lines cannot carry a newline.
    safe_name = " ".join(name.splitlines())
    header = f"# NodeHub subscription (clash)\n# name={safe_name}\n"
    return header + yaml_emitter.dump(config)
