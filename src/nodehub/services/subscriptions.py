from __future__ import annotations

import logging
from typing import Any, Mapping

from prometheus_client import Counter

from nodehub.client_export.outbound import Outbound
from nodehub.client_export.render import RenderedSubscription, parse_format, render_subscription
from nodehub.errors import NotFoundError, ValidationError
from nodehub.services.reconcile import utcnow_iso
from nodehub.store import KEY, DocumentStore, create_token, get_json, hydrate_by_index, index_remove, index_upsert

logger = logging.getLogger("nodehub.subscriptions")

_RENDER_TOTAL = Counter(
    "nodehub_subscription_render_total",
    "Subscription renders by format and result",
    labelnames=["format", "result"],
)

UPDATABLE_FIELDS = ("name", "enabled", "visible_node_ids", "remark")


def _id_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item or "").strip()]


async def create_subscription(store: DocumentStore, payload: Mapping[str, Any]) -> dict[str, Any]:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")

    now = utcnow_iso()
    subscription = {
        "token": create_token(),
        "name": name,
        "enabled": payload.get("enabled") is not False,
        "visible_node_ids": _id_list(payload.get("visible_node_ids")),
        "remark": str(payload.get("remark") or ""),
        "created_at": now,
        "updated_at": now,
    }
    await store.put(KEY.subscription(subscription["token"]), subscription)
    await index_upsert(store, KEY.IDX_SUBSCRIPTIONS, {"id": subscription["token"], "name": name, "updated_at": now})
    return subscription


async def get_subscription(store: DocumentStore, token: str) -> dict[str, Any]:
    subscription = await get_json(store, KEY.subscription(token))
    if subscription is None:
        raise NotFoundError("Subscription not found")
    return subscription


async def list_subscriptions(store: DocumentStore) -> list[dict[str, Any]]:
    rows = await hydrate_by_index(store, KEY.IDX_SUBSCRIPTIONS, KEY.subscription)
    rows.sort(key=lambda row: str(row.get("updated_at") or row.get("created_at") or ""), reverse=True)
    return rows


async def update_subscription(store: DocumentStore, token: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    subscription = await get_subscription(store, token)
    for key in UPDATABLE_FIELDS:
        if payload.get(key) is None:
            continue
        value = payload[key]
        if key == "enabled":
            subscription[key] = bool(value)
        elif key == "visible_node_ids":
            subscription[key] = _id_list(value)
        else:
            subscription[key] = str(value)
    if not str(subscription.get("name") or "").strip():
        raise ValidationError("name is required")
    subscription["updated_at"] = utcnow_iso()

    await store.put(KEY.subscription(token), subscription)
    await index_upsert(
        store,
        KEY.IDX_SUBSCRIPTIONS,
        {"id": token, "name": subscription["name"], "updated_at": subscription["updated_at"]},
    )
    return subscription


async def delete_subscription(store: DocumentStore, token: str) -> dict[str, Any]:
    await store.delete(KEY.subscription(token))
    await index_remove(store, KEY.IDX_SUBSCRIPTIONS, token)
    return {"deleted": token}


def _valid_port(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if 1 <= port <= 65535:
        return port
    return None


def build_outbounds(nodes: list[Mapping[str, Any]]) -> list[Outbound]:
    """One outbound per (node, template) pair of each node's current desired snapshot."""
    out: list[Outbound] = []
    for node in nodes:
        desired = node.get("desired_config")
        if not isinstance(desired, Mapping):
            continue
        address = str(node.get("entry_direct") or node.get("entry_cdn") or node.get("entry_ip") or "").strip()
        if not address:
            continue
        params = desired.get("params") if isinstance(desired.get("params"), Mapping) else {}
        templates = desired.get("templates") if isinstance(desired.get("templates"), list) else []

        for template in templates:
            if not isinstance(template, Mapping):
                continue
            defaults = template.get("defaults") if isinstance(template.get("defaults"), Mapping) else {}
            settings = {**defaults, **params}
            port = _valid_port(settings.get("port"))
            if port is None:
                continue
            out.append(
                Outbound(
                    name=f"{node.get('name') or node.get('id')} | {template.get('name') or template.get('id')}",
                    address=address,
                    port=port,
                    protocol=str(template.get("protocol") or ""),
                    transport=str(template.get("transport") or ""),
                    tls_mode=str(template.get("tls_mode") or "none"),
                    settings=settings,
                )
            )
    return out


async def render_for_token(store: DocumentStore, token: str, fmt: str) -> RenderedSubscription | None:
    """
    Render the public subscription body for `token`.

    Returns None for an unknown or disabled subscription. Raises SubscriptionFormatError (a ValueError)
    for an unknown format.
    """
    kind = parse_format(fmt).value
    subscription = await get_json(store, KEY.subscription(token))
    if subscription is None or not subscription.get("enabled"):
        _RENDER_TOTAL.labels(kind, "disabled").inc()
        return None

    nodes = await hydrate_by_index(store, KEY.IDX_NODES, KEY.node)
    visible = set(_id_list(subscription.get("visible_node_ids")))
    if visible:
        nodes = [node for node in nodes if node.get("id") in visible]

    outbounds = build_outbounds(nodes)
    rendered = render_subscription(kind, outbounds, name=str(subscription.get("name") or ""))
    _RENDER_TOTAL.labels(kind, "ok").inc()
    logger.info("subscription_rendered format=%s nodes=%s outbounds=%s", kind, len(nodes), len(outbounds))
    return rendered
