from __future__ import annotations

import shlex
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from nodehub.enums import NodeType, ReleaseStatus
from nodehub.errors import NotFoundError, ValidationError
from nodehub.services.reconcile import as_int, derive_state, parse_ts, utcnow_iso
from nodehub.store import KEY, DocumentStore, create_id, create_token, get_json, hydrate_by_index, index_remove, index_upsert

UPDATABLE_FIELDS = ("name", "region", "tags", "entry_cdn", "entry_direct", "entry_ip")
TELEMETRY_NUMBER_FIELDS = ("cpu_usage_percent", "memory_used_mb", "memory_total_mb", "memory_usage_percent")


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


def new_node_document(*, name: str, node_type: str, **fields: Any) -> dict[str, Any]:
    now = utcnow_iso()
    return {
        "id": create_id("node"),
        "name": name,
        "node_type": node_type,
        "region": str(fields.get("region") or ""),
        "tags": _str_list(fields.get("tags")),
        "entry_cdn": str(fields.get("entry_cdn") or ""),
        "entry_direct": str(fields.get("entry_direct") or ""),
        "entry_ip": str(fields.get("entry_ip") or ""),
        "token": create_token(),
        "desired_version": 0,
        "applied_version": 0,
        "last_seen_at": None,
        "deploy_info": "",
        "protocol_app_version": "",
        "last_heartbeat_error": "",
        "cpu_usage_percent": None,
        "memory_used_mb": None,
        "memory_total_mb": None,
        "memory_usage_percent": None,
        "heartbeat_reported_at": None,
        "desired_config": None,
        "desired_config_summary": "",
        "applied_config_summary": "",
        "last_release_status": ReleaseStatus.IDLE.value,
        "last_release_message": "",
        "created_at": now,
        "updated_at": now,
    }


def is_online(node: Mapping[str, Any], *, now: datetime, window_seconds: int) -> bool:
    last_seen = parse_ts(node.get("last_seen_at"))
    if last_seen is None:
        return False
    return now - last_seen <= timedelta(seconds=window_seconds)


def node_view(node: Mapping[str, Any], *, now: datetime | None = None, window_seconds: int = 120) -> dict[str, Any]:
    """Admin read model: stored document plus derived `online` and `state`, never persisted."""
    now = now or datetime.now(timezone.utc)
    view = dict(node)
    for key in TELEMETRY_NUMBER_FIELDS:
        value = node.get(key)
        view[key] = value if isinstance(value, (int, float)) and not isinstance(value, bool) else None
    for key in ("deploy_info", "protocol_app_version", "last_heartbeat_error", "desired_config_summary", "applied_config_summary"):
        view[key] = str(node.get(key) or "")
    desired_config = node.get("desired_config")
    view["desired_config"] = desired_config if isinstance(desired_config, dict) else None
    view["desired_version"] = as_int(node.get("desired_version"))
    view["applied_version"] = as_int(node.get("applied_version"))
    view["online"] = is_online(node, now=now, window_seconds=window_seconds)
    view["state"] = derive_state(node).value
    return view


async def create_node(store: DocumentStore, payload: Mapping[str, Any]) -> dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    node_type = str(payload.get("node_type") or "").strip()
    if not name:
        raise ValidationError("name is required")
    if node_type not in {item.value for item in NodeType}:
        raise ValidationError("node_type must be vps or edge")

    node = new_node_document(
        name=name,
        node_type=node_type,
        **{key: payload.get(key) for key in ("region", "tags", "entry_cdn", "entry_direct", "entry_ip")},
    )
    await store.put(KEY.node(node["id"]), node)
    await index_upsert(store, KEY.IDX_NODES, {"id": node["id"], "name": name, "updated_at": node["updated_at"]})
    return node


async def get_node(store: DocumentStore, node_id: str) -> dict[str, Any]:
    node = await get_json(store, KEY.node(node_id))
    if node is None:
        raise NotFoundError("Node not found")
    return node


async def list_nodes(store: DocumentStore) -> list[dict[str, Any]]:
    nodes = await hydrate_by_index(store, KEY.IDX_NODES, KEY.node)
    nodes.sort(key=lambda row: str(row.get("name") or ""))
    return nodes


async def update_node(store: DocumentStore, node_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    node = await get_node(store, node_id)
    for key in UPDATABLE_FIELDS:
        if payload.get(key) is None:
            continue
        node[key] = _str_list(payload[key]) if key == "tags" else str(payload[key])
    node["updated_at"] = utcnow_iso()

    await store.put(KEY.node(node_id), node)
    await index_upsert(store, KEY.IDX_NODES, {"id": node_id, "name": node.get("name"), "updated_at": node["updated_at"]})
    return node


async def delete_node(store: DocumentStore, node_id: str) -> dict[str, Any]:
    await store.delete(KEY.node(node_id))
    await index_remove(store, KEY.IDX_NODES, node_id)
    return {"deleted": node_id}


def install_command(node: Mapping[str, Any], *, api_base: str) -> str:
    if node.get("node_type") != NodeType.VPS.value:
        raise ValidationError("Install command is only available for vps nodes")

    env = {
        "AGENT_API_BASE": api_base.rstrip("/"),
        "AGENT_NODE_ID": str(node.get("id") or ""),
        "AGENT_NODE_TOKEN": str(node.get("token") or ""),
        "AGENT_DRY_RUN": "false",
    }
    assignments = " ".join(f"{key}={shlex.quote(value)}" for key, value in env.items())
    return f"pip install --upgrade nodehub && {assignments} nodehub-agent"
