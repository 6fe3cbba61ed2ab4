from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from nodehub.enums import ReleaseResultStatus, ReleaseStatus
from nodehub.errors import ValidationError
from nodehub.services.defaults import is_empty_value
from nodehub.services.reconcile import as_int, utcnow_iso
from nodehub.services.templates import resolve_template
from nodehub.store import KEY, DocumentStore, create_id, get_json, hydrate_by_index, read_index, write_index

logger = logging.getLogger("nodehub.releases")

RELEASE_MODE = "direct_apply"
UUID_PROTOCOLS = frozenset({"vless", "vmess"})


def _id_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        item_s = str(item or "").strip()
        if item_s and item_s not in out:
            out.append(item_s)
    return out


async def _next_version(store: DocumentStore, nodes: list[dict[str, Any]]) -> int:
    latest = max((as_int(row.get("version")) for row in await read_index(store, KEY.IDX_RELEASES)), default=0)
    desired = max((as_int(node.get("desired_version")) for node in nodes), default=0)
    return max(latest, desired) + 1


def _template_snapshot(template: Mapping[str, Any]) -> dict[str, Any]:
    defaults = template.get("defaults")
    return {
        "id": template.get("id"),
        "name": template.get("name"),
        "protocol": template.get("protocol"),
        "transport": template.get("transport"),
        "tls_mode": template.get("tls_mode"),
        "defaults": dict(defaults) if isinstance(defaults, Mapping) else {},
    }


async def create_release(
    store: DocumentStore,
    payload: Mapping[str, Any],
    *,
    retention: int = 10,
) -> dict[str, Any]:
    """
    Push a config snapshot to a set of nodes.

    Every target found gets the same `desired_version`; agents pick it up on their next reconcile.
    Targets that do not exist are reported in `results` and do not fail the release.
    """
    node_ids = _id_list(payload.get("node_ids"))
    template_ids = _id_list(payload.get("template_ids"))
    if not node_ids:
        raise ValidationError("node_ids must be a non-empty array")
    if not template_ids:
        raise ValidationError("template_ids must be a non-empty array")
    raw_params = payload.get("params")
    params: dict[str, Any] = dict(raw_params) if isinstance(raw_params, Mapping) else {}

    templates: list[dict[str, Any]] = []
    for template_id in template_ids:
        template = await resolve_template(store, template_id)
        if template is None:
            logger.warning("release_template_skipped template_id=%s reason=not_found", template_id)
            continue
        templates.append(template)
    if not templates:
        raise ValidationError("No valid templates selected")

    if any(str(tpl.get("protocol") or "") in UUID_PROTOCOLS for tpl in templates) and is_empty_value(
        params.get("uuid")
    ):
        params["uuid"] = str(uuid.uuid4())

    targets: list[dict[str, Any]] = []
    results: list[dict[str, Any]] = []
    for node_id in node_ids:
        node = await get_json(store, KEY.node(node_id))
        if node is None:
            results.append({"node_id": node_id, "status": ReleaseResultStatus.FAILED.value, "reason": "node not found"})
            continue
        targets.append(node)

    rev = await _next_version(store, targets)
    now = utcnow_iso()
    template_names = [str(tpl.get("name") or tpl.get("id")) for tpl in templates]
    summary = f"v{rev}: {', '.join(template_names)}"
    desired_config = {
        "rev": rev,
        "template_ids": [tpl.get("id") for tpl in templates],
        "template_names": template_names,
        "templates": [_template_snapshot(tpl) for tpl in templates],
        "params": params,
        "operation_id": create_id("op"),
        "created_at": now,
    }

    for node in targets:
        node["desired_version"] = rev
        node["desired_config"] = desired_config
        node["desired_config_summary"] = summary
        node["last_release_status"] = ReleaseStatus.PENDING.value
        node["last_release_message"] = f"release queued v{rev}"
        node["updated_at"] = now
        await store.put(KEY.node(node["id"]), node)
        results.append({"node_id": node["id"], "status": ReleaseResultStatus.QUEUED.value})

    release = {
        "id": create_id("rel"),
        "version": rev,
        "mode": RELEASE_MODE,
        "node_ids": node_ids,
        "template_ids": desired_config["template_ids"],
        "template_names": template_names,
        "summary": summary,
        "params": params,
        "results": results,
        "created_at": now,
    }
    await store.put(KEY.release(release["id"]), release)

    rows = await read_index(store, KEY.IDX_RELEASES)
    rows.append({"id": release["id"], "version": rev, "created_at": now})
    await _prune_releases(store, rows, retention=retention)

    logger.info(
        "release_created release_id=%s version=%s targets=%s missing=%s",
        release["id"],
        rev,
        len(targets),
        len(node_ids) - len(targets),
    )
    return release


async def _prune_releases(store: DocumentStore, rows: list[dict[str, Any]], *, retention: int) -> None:
    rows = sorted(rows, key=lambda row: as_int(row.get("version")), reverse=True)
    keep = max(1, retention)
    for row in rows[keep:]:
        await store.delete(KEY.release(str(row["id"])))
    await write_index(store, KEY.IDX_RELEASES, rows[:keep])


async def list_releases(store: DocumentStore) -> list[dict[str, Any]]:
    releases = await hydrate_by_index(store, KEY.IDX_RELEASES, KEY.release)
    releases.sort(key=lambda row: as_int(row.get("version")), reverse=True)
    return releases
