import base64

import pytest

from nodehub.errors import NotFoundError, ValidationError
from nodehub.services.nodes import create_node
from nodehub.services.releases import create_release
from nodehub.services.subscriptions import (
    build_outbounds,
    create_subscription,
    delete_subscription,
    get_subscription,
    list_subscriptions,
    render_for_token,
    update_subscription,
)
from nodehub.store import MemoryDocumentStore


def _node(name: str, *, desired_config, **entries) -> dict:
    return {"id": f"node_{name}", "name": name, "desired_config": desired_config, **entries}


def test_build_outbounds_merges_params_over_defaults() -> None:
    snapshot = {
        "templates": [
            {"id": "t1", "name": "WS", "protocol": "vless", "transport": "ws", "tls_mode": "tls", "defaults": {"port": 2053, "path": "/ws"}},
            {"id": "t2", "name": "Bad port", "protocol": "trojan", "transport": "tcp", "tls_mode": "tls", "defaults": {"port": "x"}},
        ],
        "params": {"uuid": "u-1", "path": "/custom"},
    }
    nodes = [
        _node("a", desired_config=snapshot, entry_cdn="cdn.example.org", entry_ip="1.1.1.1"),
        _node("b", desired_config=snapshot, entry_direct="", entry_cdn="", entry_ip=""),
        _node("c", desired_config=None, entry_direct="c.example.org"),
    ]

    out = build_outbounds(nodes)

    assert len(out) == 1
    assert out[0].name == "a | WS"
    assert out[0].address == "cdn.example.org"
    assert out[0].port == 2053
    assert out[0].settings["path"] == "/custom"
    assert out[0].settings["uuid"] == "u-1"


@pytest.mark.asyncio
async def test_subscription_crud() -> None:
    store = MemoryDocumentStore()

    sub = await create_subscription(store, {"name": "family"})
    assert sub["enabled"] is True
    assert len(sub["token"]) == 32

    updated = await update_subscription(store, sub["token"], {"enabled": False, "remark": "paused"})
    assert updated["enabled"] is False
    assert updated["remark"] == "paused"
    assert [row["token"] for row in await list_subscriptions(store)] == [sub["token"]]

    with pytest.raises(ValidationError):
        await create_subscription(store, {"name": " "})

    assert await delete_subscription(store, sub["token"]) == {"deleted": sub["token"]}
    with pytest.raises(NotFoundError):
        await get_subscription(store, sub["token"])


@pytest.mark.asyncio
async def test_render_for_token_filters_visible_nodes() -> None:
    store = MemoryDocumentStore()
    first = await create_node(store, {"name": "first", "node_type": "vps", "entry_direct": "first.example.org"})
    second = await create_node(store, {"name": "second", "node_type": "edge", "entry_cdn": "second.example.org"})
    await create_release(
        store,
        {"node_ids": [first["id"], second["id"]], "template_ids": ["tpl_builtin_trojan_tcp_tls"], "params": {"password": "pw"}},
    )
    sub = await create_subscription(store, {"name": "only-first", "visible_node_ids": [first["id"]]})

    rendered = await render_for_token(store, sub["token"], "v2ray")

    links = base64.b64decode(rendered.content).decode().split("\n")
    assert links == [
        "trojan://pw@first.example.org:2087?type=tcp&security=tls&sni=&fp=chrome#first%20%7C%20Trojan%20%2B%20TCP%20%2B%20TLS"
    ]


@pytest.mark.asyncio
async def test_render_for_disabled_or_missing_token_is_none() -> None:
    store = MemoryDocumentStore()
    sub = await create_subscription(store, {"name": "off", "enabled": False})

    assert await render_for_token(store, sub["token"], "clash") is None
    assert await render_for_token(store, "missing", "v2ray") is None
