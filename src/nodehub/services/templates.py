from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from nodehub.enums import TemplateKind
from nodehub.errors import NotFoundError, ValidationError
from nodehub.services.defaults import apply_template_defaults, filled_fields
from nodehub.store import (
    KEY,
    DocumentStore,
    create_id,
    get_json,
    hydrate_by_index,
    index_remove,
    index_upsert,
)

logger = logging.getLogger("nodehub.templates")


@dataclass(frozen=True)
class RegistryOption:
    key: str
    label: str


PROTOCOLS: tuple[RegistryOption, ...] = (
    RegistryOption("vless", "VLESS"),
    RegistryOption("trojan", "Trojan"),
    RegistryOption("hysteria2", "Hysteria2"),
    RegistryOption("shadowsocks2022", "Shadowsocks 2022"),
    RegistryOption("vmess", "VMess"),
)
TRANSPORTS: tuple[RegistryOption, ...] = (
    RegistryOption("ws", "WebSocket"),
    RegistryOption("grpc", "gRPC"),
    RegistryOption("tcp", "TCP"),
    RegistryOption("udp", "UDP"),
    RegistryOption("h2", "HTTP/2"),
    RegistryOption("httpupgrade", "HTTPUpgrade"),
)
TLS_MODES: tuple[RegistryOption, ...] = (
    RegistryOption("tls", "TLS"),
    RegistryOption("reality", "Reality"),
    RegistryOption("none", "None"),
)

DEFAULT_NODE_TYPES = ("vps", "edge")


@dataclass(frozen=True)
class BuiltinTemplate:
    id: str
    name: str
    protocol: str
    transport: str
    tls_mode: str
    node_types: tuple[str, ...]
    description: str
    defaults: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": TemplateKind.BUILTIN.value,
            "name": self.name,
            "protocol": self.protocol,
            "transport": self.transport,
            "tls_mode": self.tls_mode,
            "node_types": list(self.node_types),
            "description": self.description,
            "defaults": dict(self.defaults),
        }


BUILTIN_TEMPLATES: tuple[BuiltinTemplate, ...] = (
    BuiltinTemplate(
        id="tpl_builtin_vless_reality_tcp",
        name="VLESS + Reality + TCP",
        protocol="vless",
        transport="tcp",
        tls_mode="reality",
        node_types=("vps",),
        description="Reality direct template",
        defaults=MappingProxyType(
            {
                "port": 49443,
                "flow": "xtls-rprx-vision",
                "server_name": "",
                "reality_private_key": "",
                "reality_short_id": "",
            }
        ),
    ),
    BuiltinTemplate(
        id="tpl_builtin_hysteria2_udp_tls",
        name="Hysteria2",
        protocol="hysteria2",
        transport="udp",
        tls_mode="tls",
        node_types=("vps",),
        description="Hysteria2 UDP template",
        defaults=MappingProxyType({"port": 49444, "password": "", "obfs": "none", "sni": ""}),
    ),
    BuiltinTemplate(
        id="tpl_builtin_ss2022_tcp",
        name="Shadowsocks 2022",
        protocol="shadowsocks2022",
        transport="tcp",
        tls_mode="none",
        node_types=("vps",),
        description="Shadowsocks 2022 template",
        defaults=MappingProxyType({"port": 49445, "method": "2022-blake3-aes-128-gcm", "password": ""}),
    ),
    BuiltinTemplate(
        id="tpl_builtin_vless_ws_tls",
        name="VLESS + WS + TLS",
        protocol="vless",
        transport="ws",
        tls_mode="tls",
        node_types=("vps", "edge"),
        description="Default WebSocket TLS template",
        defaults=MappingProxyType({"port": 2053, "path": "/ws", "host": ""}),
    ),
    BuiltinTemplate(
        id="tpl_builtin_trojan_tcp_tls",
        name="Trojan + TCP + TLS",
        protocol="trojan",
        transport="tcp",
        tls_mode="tls",
        node_types=("vps",),
        description="Classic Trojan TLS template",
        defaults=MappingProxyType({"port": 2087, "password": "", "sni": ""}),
    ),
)

_BUILTINS_BY_ID: Mapping[str, BuiltinTemplate] = MappingProxyType({tpl.id: tpl for tpl in BUILTIN_TEMPLATES})


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def find_builtin(template_id: str) -> BuiltinTemplate | None:
    return _BUILTINS_BY_ID.get(template_id)


def registry() -> dict[str, list[dict[str, str]]]:
    def _rows(options: tuple[RegistryOption, ...]) -> list[dict[str, str]]:
        return [{"key": opt.key, "label": opt.label} for opt in options]

    return {"protocols": _rows(PROTOCOLS), "transports": _rows(TRANSPORTS), "tls_modes": _rows(TLS_MODES)}


def _known(options: tuple[RegistryOption, ...], key: str) -> bool:
    return any(opt.key == key for opt in options)


def merge_override(builtin: BuiltinTemplate, override: Mapping[str, Any] | None) -> dict[str, Any]:
    merged = builtin.as_dict()
    if not override:
        return merged

    name = str(override.get("name") or "").strip()
    description = str(override.get("description") or "").strip()
    if name:
        merged["name"] = name
    if description:
        merged["description"] = description
    override_defaults = override.get("defaults")
    if isinstance(override_defaults, Mapping):
        merged["defaults"] = {**merged["defaults"], **override_defaults}
    if override.get("updated_at"):
        merged["updated_at"] = override["updated_at"]
    return merged


def _normalized_defaults(template: Mapping[str, Any]) -> dict[str, Any]:
    return apply_template_defaults(
        template.get("protocol"),
        template.get("transport"),
        template.get("tls_mode"),
        template.get("defaults"),
    )


async def _resolve_builtin(store: DocumentStore, builtin: BuiltinTemplate) -> dict[str, Any]:
    override = await get_json(store, KEY.template_override(builtin.id))
    merged = merge_override(builtin, override)
    normalized = _normalized_defaults(merged)
    added = filled_fields(merged["defaults"], normalized)
    if added:
        # Persist generated secrets so the next read returns the same values.
        next_override = dict(override or {})
        next_override["defaults"] = {**(next_override.get("defaults") or {}), **added}
        next_override.setdefault("updated_at", _utcnow_iso())
        await store.put(KEY.template_override(builtin.id), next_override)
        logger.info("template_defaults_persisted template_id=%s fields=%s", builtin.id, ",".join(sorted(added)))
    merged["defaults"] = normalized
    return merged


async def resolve_template(store: DocumentStore, template_id: str) -> dict[str, Any] | None:
    builtin = find_builtin(template_id)
    if builtin is not None:
        return await _resolve_builtin(store, builtin)
    return await get_json(store, KEY.template(template_id))


async def get_template(store: DocumentStore, template_id: str) -> dict[str, Any]:
    template = await resolve_template(store, template_id)
    if template is None:
        raise NotFoundError("Template not found")
    return template


async def list_templates(store: DocumentStore) -> list[dict[str, Any]]:
    rows = [await _resolve_builtin(store, builtin) for builtin in BUILTIN_TEMPLATES]
    rows.extend(await hydrate_by_index(store, KEY.IDX_TEMPLATES, KEY.template))
    rows.sort(key=lambda row: (str(row.get("kind") or ""), str(row.get("name") or "")))
    return rows


async def create_template(store: DocumentStore, payload: Mapping[str, Any]) -> dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    protocol = str(payload.get("protocol") or "").strip()
    transport = str(payload.get("transport") or "").strip()
    tls_mode = str(payload.get("tls_mode") or "").strip()

    if not name:
        raise ValidationError("name is required")
    if not protocol:
        raise ValidationError("protocol is required")
    if not transport:
        raise ValidationError("transport is required")
    if not tls_mode:
        raise ValidationError("tls_mode is required")
    if not (_known(PROTOCOLS, protocol) and _known(TRANSPORTS, transport) and _known(TLS_MODES, tls_mode)):
        raise ValidationError("Unknown protocol/transport/tls_mode")

    node_types = payload.get("node_types")
    now = _utcnow_iso()
    template = {
        "id": create_id("tpl"),
        "kind": TemplateKind.CUSTOM.value,
        "name": name,
        "protocol": protocol,
        "transport": transport,
        "tls_mode": tls_mode,
        "node_types": list(node_types) if isinstance(node_types, list) and node_types else list(DEFAULT_NODE_TYPES),
        "description": str(payload.get("description") or ""),
        "defaults": apply_template_defaults(protocol, transport, tls_mode, payload.get("defaults")),
        "created_at": now,
        "updated_at": now,
    }

    await store.put(KEY.template(template["id"]), template)
    await index_upsert(store, KEY.IDX_TEMPLATES, {"id": template["id"], "name": name, "updated_at": now})
    logger.info("template_created template_id=%s profile=%s:%s:%s", template["id"], protocol, transport, tls_mode)
    return template


async def update_template(store: DocumentStore, template_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    now = _utcnow_iso()
    builtin = find_builtin(template_id)
    if builtin is not None:
        existing = await get_json(store, KEY.template_override(template_id)) or {}
        body_defaults = payload.get("defaults")
        override = {
            **existing,
            "name": str(payload["name"]) if payload.get("name") is not None else existing.get("name"),
            "description": (
                str(payload["description"]) if payload.get("description") is not None else existing.get("description")
            ),
            "defaults": {
                **(existing.get("defaults") or {}),
                **(body_defaults if isinstance(body_defaults, Mapping) else {}),
            },
            "updated_at": now,
        }
        await store.put(KEY.template_override(template_id), override)
        return await _resolve_builtin(store, builtin)

    current = await get_json(store, KEY.template(template_id))
    if current is None:
        raise NotFoundError("Template not found")

    for key in ("name", "description", "node_types"):
        if payload.get(key) is not None:
            current[key] = payload[key]
    if isinstance(payload.get("defaults"), Mapping):
        current["defaults"] = dict(payload["defaults"])
    current["defaults"] = _normalized_defaults(current)
    current["updated_at"] = now

    await store.put(KEY.template(template_id), current)
    await index_upsert(store, KEY.IDX_TEMPLATES, {"id": template_id, "name": current.get("name"), "updated_at": now})
    return current


async def delete_template(store: DocumentStore, template_id: str) -> dict[str, Any]:
    if find_builtin(template_id) is not None:
        await store.delete(KEY.template_override(template_id))
        return {"deleted": template_id, "action": "reset_builtin"}

    await store.delete(KEY.template(template_id))
    await index_remove(store, KEY.IDX_TEMPLATES, template_id)
    return {"deleted": template_id}
