import pytest

from nodehub.enums import NodeState
from nodehub.errors import NotFoundError, UnauthorizedError, ValidationError
from nodehub.services.nodes import create_node, get_node
from nodehub.services.reconcile import (
    derive_state,
    heartbeat,
    ingest_events,
    normalize_event,
    reconcile,
    sanitize_report,
)
from nodehub.store import KEY, MemoryDocumentStore


async def _node(store: MemoryDocumentStore, **fields) -> dict:
    node = await create_node(store, {"name": "n1", "node_type": "vps", "entry_direct": "n1.example.org"})
    if fields:
        node.update(fields)
        await store.put(KEY.node(node["id"]), node)
    return node


def _ok(version, **extra) -> dict:
    return {"type": "apply_result", "status": "ok", "applied_version": version, **extra}


@pytest.mark.asyncio
async def test_fresh_node_needs_no_update() -> None:
    store = MemoryDocumentStore()
    node = await _node(store)

    out = await reconcile(store, node["id"], node["token"], "0")

    assert out["needs_update"] is False
    assert out["desired_version"] == 0
    assert out["current_version"] == 0
    assert out["desired_config"] is None


@pytest.mark.asyncio
async def test_pending_release_then_ok_event_converges() -> None:
    store = MemoryDocumentStore()
    node = await _node(
        store,
        desired_version=1,
        desired_config={"rev": 1, "templates": [], "params": {}},
        desired_config_summary="v1: VLESS + WS + TLS",
        last_release_status="pending",
    )

    pending = await reconcile(store, node["id"], node["token"], 0)
    assert pending["needs_update"] is True
    assert pending["desired_version"] == 1
    assert pending["desired_config"]["rev"] == 1

    result = await ingest_events(store, node["id"], node["token"], [_ok(1)])
    assert result["accepted"] == 1
    assert result["applied_version"] == 1

    stored = await get_node(store, node["id"])
    assert stored["applied_version"] == 1
    assert stored["last_release_status"] == "ok"
    assert stored["last_release_message"] == "release applied v1"
    assert stored["applied_config_summary"] == "v1: VLESS + WS + TLS"
    assert derive_state(stored) is NodeState.CONVERGED

    after = await reconcile(store, node["id"], node["token"], 1)
    assert after["needs_update"] is False


@pytest.mark.asyncio
async def test_reconcile_overwrites_applied_version_downward() -> None:
    store = MemoryDocumentStore()
    node = await _node(store, desired_version=3, applied_version=3)

    out = await reconcile(store, node["id"], node["token"], "1")

    assert out["needs_update"] is True
    assert (await get_node(store, node["id"]))["applied_version"] == 1


@pytest.mark.asyncio
async def test_reconcile_version_parsing() -> None:
    store = MemoryDocumentStore()
    node = await _node(store, desired_version=2)

    assert (await reconcile(store, node["id"], node["token"], None))["current_version"] == 0
    assert (await reconcile(store, node["id"], node["token"], "1.9"))["current_version"] == 1
    assert (await reconcile(store, node["id"], node["token"], "-4"))["current_version"] == 0
    with pytest.raises(ValidationError):
        await reconcile(store, node["id"], node["token"], "abc")


@pytest.mark.asyncio
async def test_summary_is_not_copied_below_desired_version() -> None:
    store = MemoryDocumentStore()
    node = await _node(store, desired_version=5, desired_config_summary="v5: A", applied_config_summary="v3: old")

    await reconcile(store, node["id"], node["token"], 4)
    await ingest_events(store, node["id"], node["token"], [_ok(4)])
    assert (await get_node(store, node["id"]))["applied_config_summary"] == "v3: old"

    await reconcile(store, node["id"], node["token"], 5)
    assert (await get_node(store, node["id"]))["applied_config_summary"] == "v5: A"


@pytest.mark.asyncio
async def test_events_max_merge_and_isolate_bad_items() -> None:
    store = MemoryDocumentStore()
    node = await _node(store, desired_version=4, applied_version=2)

    result = await ingest_events(
        store,
        node["id"],
        node["token"],
        [
            _ok(1),
            _ok("3"),
            {"type": "apply_result", "status": "pending", "applied_version": 2},
            {"type": "apply_result", "status": "bogus", "applied_version": 9},
            {"type": "other", "status": "ok", "applied_version": 9},
            _ok(-1),
            _ok(True),
            "not-an-object",
        ],
    )

    assert result["accepted"] == 3
    assert result["rejected"] == 5
    stored = await get_node(store, node["id"])
    assert stored["applied_version"] == 3
    # The last accepted event decides the status.
    assert stored["last_release_status"] == "pending"
    assert stored["last_release_message"] == "release apply pending"


@pytest.mark.asyncio
async def test_oversized_event_version_is_rejected_alone() -> None:
    store = MemoryDocumentStore()
    node = await _node(store, desired_version=1)

    result = await ingest_events(store, node["id"], node["token"], [_ok(1), _ok(10**400)])

    assert result["accepted"] == 1
    assert result["rejected"] == 1
    assert (await get_node(store, node["id"]))["applied_version"] == 1


@pytest.mark.asyncio
async def test_duplicate_event_batch_leaves_state_unchanged() -> None:
    store = MemoryDocumentStore()
    node = await _node(store, desired_version=3, desired_config_summary="v3: A", last_release_status="pending")
    batch = [
        _ok(2, event_id="e1"),
        {"type": "apply_result", "status": "failed", "applied_version": 3, "event_id": "e2"},
        _ok(3, event_id="e3"),
    ]

    first = await ingest_events(store, node["id"], node["token"], batch)
    after_first = await get_node(store, node["id"])
    second = await ingest_events(store, node["id"], node["token"], batch)
    after_second = await get_node(store, node["id"])

    assert second == first
    for key in ("applied_version", "applied_config_summary", "last_release_status", "last_release_message"):
        assert after_second[key] == after_first[key]
    assert after_second["applied_version"] == 3
    assert derive_state(after_second) is NodeState.CONVERGED


@pytest.mark.asyncio
async def test_failed_event_keeps_applied_version() -> None:
    store = MemoryDocumentStore()
    node = await _node(store, desired_version=2, applied_version=1)

    await ingest_events(
        store,
        node["id"],
        node["token"],
        [{"type": "apply_result", "status": "failed", "applied_version": 2, "message": "x" * 600}],
    )

    stored = await get_node(store, node["id"])
    assert stored["applied_version"] == 1
    assert stored["last_release_status"] == "failed"
    assert len(stored["last_release_message"]) == 512
    assert derive_state(stored) is NodeState.FAILED


@pytest.mark.asyncio
async def test_events_require_non_empty_list() -> None:
    store = MemoryDocumentStore()
    node = await _node(store)

    with pytest.raises(ValidationError):
        await ingest_events(store, node["id"], node["token"], [])


@pytest.mark.asyncio
async def test_authentication_errors() -> None:
    store = MemoryDocumentStore()
    node = await _node(store)

    with pytest.raises(ValidationError):
        await reconcile(store, "", node["token"], 0)
    with pytest.raises(UnauthorizedError):
        await reconcile(store, node["id"], "", 0)
    with pytest.raises(NotFoundError):
        await reconcile(store, "node_missing", node["token"], 0)
    with pytest.raises(UnauthorizedError):
        await heartbeat(store, node["id"], "wrong-token")


@pytest.mark.asyncio
async def test_heartbeat_without_report_only_touches_liveness() -> None:
    store = MemoryDocumentStore()
    node = await _node(store, cpu_usage_percent=12.5)

    out = await heartbeat(store, node["id"], node["token"])

    stored = await get_node(store, node["id"])
    assert stored["last_seen_at"] == out["last_seen_at"]
    assert stored["cpu_usage_percent"] == 12.5
    assert out["heartbeat_reported_at"] is None


@pytest.mark.asyncio
async def test_heartbeat_report_is_sanitized() -> None:
    store = MemoryDocumentStore()
    node = await _node(store)

    out = await heartbeat(
        store,
        node["id"],
        node["token"],
        {
            "cpu_usage_percent": 150,
            "memory_used_mb": "512.456",
            "memory_total_mb": 2048,
            "memory_usage_percent": float("nan"),
            "protocol_app_version": "  sing-box 1.9.0  ",
            "error": "e" * 900,
        },
    )

    stored = await get_node(store, node["id"])
    assert out["heartbeat_reported_at"] == stored["heartbeat_reported_at"]
    assert stored["cpu_usage_percent"] is None
    assert stored["memory_used_mb"] == 512.46
    assert stored["memory_total_mb"] == 2048
    assert stored["memory_usage_percent"] is None
    assert stored["protocol_app_version"] == "sing-box 1.9.0"
    assert len(stored["last_heartbeat_error"]) == 512


@pytest.mark.asyncio
async def test_heartbeat_stores_null_for_numbers_beyond_float_range() -> None:
    store = MemoryDocumentStore()
    node = await _node(store)

    await heartbeat(store, node["id"], node["token"], {"cpu_usage_percent": 10**400, "memory_total_mb": 1024})

    stored = await get_node(store, node["id"])
    assert stored["cpu_usage_percent"] is None
    assert stored["memory_total_mb"] == 1024


def test_sanitize_report_ignores_unknown_keys() -> None:
    out = sanitize_report({"node_id": "x", "token": "y", "cpu_usage_percent": True})

    assert "node_id" not in out
    assert "token" not in out
    assert out["cpu_usage_percent"] is None


def test_normalize_event_without_version() -> None:
    event = normalize_event({"type": "apply_result", "status": "ok", "event_id": "e1"})

    assert event is not None
    assert event.applied_version is None
    assert event.event_id == "e1"


def test_derive_state() -> None:
    assert derive_state({"desired_version": 0, "last_release_status": "failed"}) is NodeState.IDLE
    assert derive_state({"desired_version": 2, "applied_version": 1}) is NodeState.PENDING
    assert derive_state({"desired_version": 2, "applied_version": 2, "last_release_status": "ok"}) is NodeState.CONVERGED
