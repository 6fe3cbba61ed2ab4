import base64
import json
from urllib.parse import parse_qs, urlsplit

import pytest
import yaml

from nodehub.client_export import yaml_emitter
from nodehub.client_export.outbound import Outbound
from nodehub.client_export.render import SubscriptionFormatError, render_subscription
from nodehub.client_export.v2ray import share_link

UUID = "11111111-2222-3333-4444-555555555555"


def _links(content: bytes) -> list[str]:
    return base64.b64decode(content).decode("utf-8").split("\n")


def _query(uri: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(uri).query, keep_blank_values=True).items()}


def test_trojan_tcp_tls_link() -> None:
    ob = Outbound("edge | trojan", "addr", 443, "trojan", "tcp", "tls", {"password": "p", "sni": "s"})
    other = Outbound("edge | ss", "addr", 8388, "shadowsocks2022", "tcp", "none", {"method": "m", "password": "x"})

    out = render_subscription("v2ray", [ob, other])

    links = _links(out.content)
    assert out.media_type == "text/plain; charset=utf-8"
    assert links[0].startswith("trojan://p@addr:443?")
    assert links[0].endswith("#edge%20%7C%20trojan")
    assert _query(links[0]) == {"type": "tcp", "security": "tls", "sni": "s", "fp": "chrome"}
    assert links[1].startswith("ss://")


def test_vless_reality_link() -> None:
    ob = Outbound(
        "r",
        "1.2.3.4",
        49443,
        "vless",
        "tcp",
        "reality",
        {"uuid": UUID, "server_name": "www.example.com", "reality_public_key": "PBK", "reality_short_id": "ab", "flow": "xtls-rprx-vision"},
    )

    uri = share_link(ob)

    assert uri is not None
    assert uri.startswith(f"vless://{UUID}@1.2.3.4:49443?")
    assert _query(uri) == {
        "type": "tcp",
        "security": "reality",
        "encryption": "none",
        "sni": "www.example.com",
        "fp": "chrome",
        "pbk": "PBK",
        "sid": "ab",
        "flow": "xtls-rprx-vision",
    }


def test_vless_ws_keeps_slash_in_path() -> None:
    ob = Outbound("w", "cdn.example.org", 2053, "vless", "ws", "tls", {"uuid": UUID, "path": "/ws", "host": "h"})

    uri = share_link(ob)

    assert "path=/ws" in uri
    assert _query(uri)["host"] == "h"
    assert _query(uri)["sni"] == "h"


def test_vmess_link_is_base64_json() -> None:
    ob = Outbound("vm", "a.example.org", 443, "vmess", "grpc", "tls", {"uuid": UUID, "service_name": "svc"})

    uri = share_link(ob)
    payload = json.loads(base64.b64decode(uri[len("vmess://") :]))

    assert list(payload) == ["v", "ps", "add", "port", "id", "aid", "scy", "net", "type", "host", "path", "tls", "sni", "fp", "alpn"]
    assert payload["port"] == 443
    assert payload["net"] == "grpc"
    assert payload["type"] == "gun"
    assert payload["path"] == "svc"
    assert payload["tls"] == "tls"
    assert payload["scy"] == "auto"


def test_shadowsocks_link() -> None:
    ob = Outbound("ss", "b.example.org", 49445, "shadowsocks2022", "tcp", "none", {"method": "2022-blake3-aes-128-gcm", "password": "pw"})

    uri = share_link(ob)

    userinfo = uri[len("ss://") :].split("@", 1)[0]
    assert base64.b64decode(userinfo).decode() == "2022-blake3-aes-128-gcm:pw"
    assert uri.endswith("@b.example.org:49445#ss")


def test_hysteria2_link_params() -> None:
    plain = Outbound("h", "c.example.org", 49444, "hysteria2", "udp", "tls", {"password": "pw", "obfs": "none"})
    obfs = Outbound("h", "c.example.org", 49444, "hysteria2", "udp", "tls", {"password": "pw", "sni": "s", "obfs": "salamander", "obfs_password": "o"})

    assert share_link(plain) == "hysteria2://pw@c.example.org:49444?#h"
    assert _query(share_link(obfs)) == {"sni": "s", "obfs": "salamander", "obfs-password": "o"}


def test_unsupported_or_incomplete_outbounds_are_dropped() -> None:
    outbounds = [
        Outbound("wg", "d", 51820, "wireguard", "udp", "none", {"private_key": "k"}),
        Outbound("no-uuid", "d", 443, "vless", "ws", "tls", {}),
        Outbound("no-pass", "d", 443, "trojan", "tcp", "tls", {}),
    ]

    assert base64.b64decode(render_subscription("v2ray", outbounds).content) == b""
    clash = yaml.safe_load(render_subscription("clash", outbounds).content)
    assert clash["proxies"] == []
    assert clash["proxy-groups"][0]["proxies"] == ["DIRECT"]
    singbox = json.loads(render_subscription("singbox", outbounds).content)
    assert [item["tag"] for item in singbox["outbounds"]] == ["NodeHub", "direct"]


def test_clash_document_parses_as_yaml() -> None:
    outbounds = [
        Outbound("edge | VLESS: ws", "cdn.example.org", 2053, "vless", "ws", "tls", {"uuid": UUID, "path": "/ws", "host": "cdn.example.org"}),
        Outbound("true", "10.0.0.1", 49444, "hysteria2", "udp", "tls", {"password": "123", "obfs": "none"}),
        Outbound("r", "1.2.3.4", 49443, "vless", "tcp", "reality", {"uuid": UUID, "reality_public_key": "K", "reality_short_id": "0011"}),
    ]

    out = render_subscription("clash", outbounds, name="Family")
    text = out.content.decode()
    doc = yaml.safe_load(text)

    assert out.media_type == "text/yaml; charset=utf-8"
    assert text.startswith("# NodeHub subscription (clash)\n# name=Family\n")
    assert [proxy["name"] for proxy in doc["proxies"]] == ["edge | VLESS: ws", "true", "r"]
    assert doc["proxies"][0]["ws-opts"] == {"path": "/ws", "headers": {"Host": "cdn.example.org"}}
    assert doc["proxies"][0]["uuid"] == UUID
    assert "flow" not in doc["proxies"][0]
    assert doc["proxies"][1]["password"] == "123"
    assert doc["proxies"][1]["up"] == "100 Mbps"
    assert "obfs" not in doc["proxies"][1]
    assert doc["proxies"][2]["reality-opts"] == {"public-key": "K", "short-id": "0011"}
    assert doc["proxy-groups"] == [{"name": "NodeHub", "type": "select", "proxies": ["edge | VLESS: ws", "true", "r"]}]
    assert doc["rules"] == ["MATCH,NodeHub"]


def test_yaml_emitter_layout() -> None:
    text = yaml_emitter.dump({"a": [], "b": [{"x": 1, "y": {"z": "0"}}], "c": {}, "d": None, "e": ["- x", "ok"]})

    assert text == 'a:\n  []\nb:\n- x: 1\n  "y":\n    z: "0"\nc: {}\ne:\n- "- x"\n- ok\n'
    assert yaml.safe_load(text) == {"a": [], "b": [{"x": 1, "y": {"z": "0"}}], "c": {}, "e": ["- x", "ok"]}


def test_yaml_emitter_quotes_boolean_like_words() -> None:
    words = ["y", "n", "yes", "No", "on", "OFF", "true", "null", "~"]

    text = yaml_emitter.dump({"names": words, "plain": "yankee"})

    assert "- yankee" not in text
    assert "plain: yankee\n" in text
    for word in words:
        assert f'- "{word}"\n' in text
    assert yaml.safe_load(text) == {"names": words, "plain": "yankee"}


def test_singbox_structure() -> None:
    outbounds = [
        Outbound("r", "1.2.3.4", 49443, "vless", "tcp", "reality", {"uuid": UUID, "reality_public_key": "K", "reality_short_id": "ab"}),
        Outbound("t", "t.example.org", 443, "trojan", "ws", "tls", {"password": "p", "host": "t.example.org"}),
        Outbound("h", "h.example.org", 49444, "hysteria2", "udp", "tls", {"password": "p", "obfs": "salamander", "obfs_password": "o"}),
        Outbound("s", "s.example.org", 49445, "shadowsocks2022", "tcp", "none", {"method": "m", "password": "p"}),
    ]

    out = render_subscription("singbox", outbounds)
    doc = json.loads(out.content)
    selector, vless, trojan, hy2, ss, direct = doc["outbounds"]

    assert out.media_type == "application/json; charset=utf-8"
    assert selector == {"tag": "NodeHub", "type": "selector", "outbounds": ["r", "t", "h", "s"]}
    assert direct == {"tag": "direct", "type": "direct"}
    assert vless["tls"]["reality"] == {"enabled": True, "public_key": "K", "short_id": "ab"}
    assert vless["tls"]["utls"] == {"enabled": True, "fingerprint": "chrome"}
    assert "flow" not in vless
    assert "transport" not in vless
    assert trojan["transport"]["type"] == "ws"
    assert trojan["transport"]["path"] == "/"
    assert trojan["transport"]["headers"] == {"Host": "t.example.org"}
    assert hy2["tls"]["enabled"] is True
    assert hy2["up_mbps"] == 100
    assert hy2["obfs"] == {"type": "salamander", "password": "o"}
    assert ss["type"] == "shadowsocks"
    assert "tls" not in ss
    assert out.content.decode().startswith('{\n  "outbounds"')


def test_unknown_format_is_rejected() -> None:
    with pytest.raises(SubscriptionFormatError):
        render_subscription("surge", [])
    assert isinstance(SubscriptionFormatError("x"), ValueError)
