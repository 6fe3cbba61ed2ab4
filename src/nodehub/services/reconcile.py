"""
Desired/applied version reconciliation between the control plane and node agents.

Two merge policies exist for `applied_version` and both are intentional:

- Reconcile reports what the agent runs *right now*, so the stored value is overwritten
  (an agent that restarted with an older config rolls the server-side value back).
- Apply-result events report what *has been achieved*, so they only move the value up
  (max-merge). Events are delivered at-least-once and this keeps duplicates harmless.
"""

from __future__ import annotations

import hmac
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from prometheus_client import Counter

from nodehub.enums import AgentEventType, NodeState, ReleaseStatus
from nodehub.errors import NotFoundError, UnauthorizedError, ValidationError
from nodehub.store import KEY, DocumentStore, get_json

logger = logging.getLogger("nodehub.reconcile")

_RECONCILE_TOTAL = Counter(
    "nodehub_agent_reconcile_total",
    "Agent reconcile calls by outcome",
    labelnames=["result"],
)
_HEARTBEAT_TOTAL = Counter(
    "nodehub_agent_heartbeat_total",
    "Agent heartbeat calls by report presence",
    labelnames=["report"],
)
_EVENTS_TOTAL = Counter(
    "nodehub_agent_events_total",
    "Agent apply-result events by ingestion result",
    labelnames=["result"],
)

MESSAGE_MAX_LENGTH = 512
APPLY_STATUSES = frozenset(status.value for status in (ReleaseStatus.PENDING, ReleaseStatus.OK, ReleaseStatus.FAILED))


@dataclass(frozen=True)
class NumberRange:
    minimum: float
    maximum: float


TELEMETRY_NUMBER_RANGES: Mapping[str, NumberRange] = {
    "cpu_usage_percent": NumberRange(0, 100),
    "memory_used_mb": NumberRange(0, 16 * 1024 * 1024),
    "memory_total_mb": NumberRange(0, 16 * 1024 * 1024),
    "memory_usage_percent": NumberRange(0, 100),
}
# report key -> (node field, max length)
TELEMETRY_TEXT_FIELDS: Mapping[str, tuple[str, int]] = {
    "protocol_app_version": ("protocol_app_version", 128),
    "deploy_info": ("deploy_info", 512),
    "error": ("last_heartbeat_error", 512),
}


@dataclass(frozen=True)
class ApplyResultEvent:
    event_id: str
    status: str
    applied_version: int | None
    message: str
    occurred_at: str


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            # JSON integers are unbounded; anything past float range is unusable.
            return None
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def as_int(value: Any) -> int:
    number = _finite_number(value)
    if number is None:
        return 0
    return int(math.floor(number))


def coerce_version(value: Any) -> int | None:
    """A finite, non-negative version number floored to int; None when not usable."""
    number = _finite_number(value)
    if number is None or number < 0:
        return None
    return int(math.floor(number))


def parse_current_version(value: Any) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0
    number = _finite_number(value)
    if number is None:
        raise ValidationError("current_version must be a number")
    return max(0, int(math.floor(number)))


def derive_state(node: Mapping[str, Any]) -> NodeState:
    desired = as_int(node.get("desired_version"))
    applied = as_int(node.get("applied_version"))
    status = str(node.get("last_release_status") or ReleaseStatus.IDLE.value)

    if desired == 0:
        return NodeState.IDLE
    if status == ReleaseStatus.FAILED.value:
        return NodeState.FAILED
    if desired > applied or status == ReleaseStatus.PENDING.value:
        return NodeState.PENDING
    return NodeState.CONVERGED


def _normalize_message(value: Any) -> str:
    return str(value or "").strip()[:MESSAGE_MAX_LENGTH]


def _sync_applied_summary(node: dict[str, Any]) -> None:
    if as_int(node.get("applied_version")) < as_int(node.get("desired_version")):
        return
    summary = str(node.get("desired_config_summary") or "")
    if summary:
        node["applied_config_summary"] = summary


async def authenticate_node(store: DocumentStore, node_id: Any, token: Any) -> dict[str, Any]:
    node_id_s = str(node_id or "").strip()
    token_s = str(token or "").strip()
    if not node_id_s:
        raise ValidationError("node_id is required")
    if not token_s:
        raise UnauthorizedError("X-Node-Token is required")

    node = await get_json(store, KEY.node(node_id_s))
    if node is None:
        raise NotFoundError("Node not found")
    expected = str(node.get("token") or "")
    if not expected or not hmac.compare_digest(expected.encode("utf-8"), token_s.encode("utf-8")):
        raise UnauthorizedError("Invalid node token")
    return node


async def reconcile(store: DocumentStore, node_id: Any, token: Any, current_version: Any) -> dict[str, Any]:
    node = await authenticate_node(store, node_id, token)
    reported = parse_current_version(current_version)

    previous = as_int(node.get("applied_version"))
    if reported != previous:
        node["applied_version"] = reported
        _sync_applied_summary(node)
        node["updated_at"] = utcnow_iso()
        await store.put(KEY.node(node["id"]), node)
        if reported < previous:
            logger.info(
                "applied_version_rolled_back node_id=%s previous=%s reported=%s", node["id"], previous, reported
            )

    desired = as_int(node.get("desired_version"))
    needs_update = desired > reported
    _RECONCILE_TOTAL.labels("needs_update" if needs_update else "up_to_date").inc()

    desired_config = node.get("desired_config")
    return {
        "node_id": node["id"],
        "current_version": reported,
        "desired_version": desired,
        "desired_config": desired_config if isinstance(desired_config, dict) else None,
        "desired_config_summary": str(node.get("desired_config_summary") or ""),
        "needs_update": needs_update,
    }


def _bounded_number(value: Any, bounds: NumberRange) -> float | None:
    number = _finite_number(value)
    if number is None or number < bounds.minimum or number > bounds.maximum:
        return None
    return round(number, 2)


def sanitize_report(report: Mapping[str, Any]) -> dict[str, Any]:
    """Telemetry fields from a heartbeat report; bad numbers become None instead of failing the call."""
    fields: dict[str, Any] = {}
    for key, bounds in TELEMETRY_NUMBER_RANGES.items():
        fields[key] = _bounded_number(report.get(key), bounds)
    for key, (target, max_length) in TELEMETRY_TEXT_FIELDS.items():
        fields[target] = str(report.get(key) or "").strip()[:max_length]
    return fields


async def heartbeat(
    store: DocumentStore,
    node_id: Any,
    token: Any,
    report: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    node = await authenticate_node(store, node_id, token)
    now = utcnow_iso()
    node["last_seen_at"] = now
    node["updated_at"] = now

    has_report = isinstance(report, Mapping) and bool(report)
    if has_report:
        node.update(sanitize_report(report))
        node["heartbeat_reported_at"] = now
    await store.put(KEY.node(node["id"]), node)
    _HEARTBEAT_TOTAL.labels("yes" if has_report else "no").inc()

    return {
        "node_id": node["id"],
        "desired_version": as_int(node.get("desired_version")),
        "applied_version": as_int(node.get("applied_version")),
        "last_seen_at": node["last_seen_at"],
        "heartbeat_reported_at": node.get("heartbeat_reported_at"),
    }


def normalize_event(raw: Any) -> ApplyResultEvent | None:
    if not isinstance(raw, Mapping):
        return None
    if str(raw.get("type") or "") != AgentEventType.APPLY_RESULT.value:
        return None
    status = str(raw.get("status") or "")
    if status not in APPLY_STATUSES:
        return None

    raw_version = raw.get("applied_version")
    applied_version = None
    if raw_version is not None:
        applied_version = coerce_version(raw_version)
        if applied_version is None:
            return None

    return ApplyResultEvent(
        event_id=str(raw.get("event_id") or ""),
        status=status,
        applied_version=applied_version,
        message=_normalize_message(raw.get("message")),
        occurred_at=str(raw.get("occurred_at") or ""),
    )


def apply_event(node: dict[str, Any], event: ApplyResultEvent) -> None:
    if event.status == ReleaseStatus.FAILED.value:
        node["last_release_status"] = ReleaseStatus.FAILED.value
        node["last_release_message"] = event.message or "release apply failed"
        return

    if event.applied_version is not None:
        node["applied_version"] = max(as_int(node.get("applied_version")), event.applied_version)
    _sync_applied_summary(node)

    if event.status == ReleaseStatus.OK.value:
        node["last_release_status"] = ReleaseStatus.OK.value
        node["last_release_message"] = event.message or f"release applied v{as_int(node.get('applied_version'))}"
        return

    node["last_release_status"] = ReleaseStatus.PENDING.value
    node["last_release_message"] = event.message or "release apply pending"


async def ingest_events(store: DocumentStore, node_id: Any, token: Any, events: Any) -> dict[str, Any]:
    node = await authenticate_node(store, node_id, token)
    if not isinstance(events, list) or not events:
        raise ValidationError("events must be a non-empty array")

    accepted = 0
    rejected = 0
    for raw in events:
        event = normalize_event(raw)
        if event is None:
            rejected += 1
            continue
        apply_event(node, event)
        accepted += 1

    if accepted:
        node["updated_at"] = utcnow_iso()
        await store.put(KEY.node(node["id"]), node)
    _EVENTS_TOTAL.labels("accepted").inc(accepted)
    _EVENTS_TOTAL.labels("rejected").inc(rejected)
    logger.info("events_ingested node_id=%s accepted=%s rejected=%s", node["id"], accepted, rejected)

    return {
        "node_id": node["id"],
        "accepted": accepted,
        "rejected": rejected,
        "applied_version": as_int(node.get("applied_version")),
        "applied_config_summary": str(node.get("applied_config_summary") or ""),
        "last_release_status": str(node.get("last_release_status") or ReleaseStatus.IDLE.value),
        "last_release_message": str(node.get("last_release_message") or ""),
    }
