from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

DEFAULT_FINGERPRINT = "chrome"
DEFAULT_GRPC_SERVICE = "grpc"
DEFAULT_MBPS = 100


@dataclass(frozen=True)
class Outbound:
    """One client-facing endpoint: a node address paired with a template's merged settings."""

    name: str
    address: str
    port: int
    protocol: str
    transport: str = "tcp"
    tls_mode: str = "none"
    settings: Mapping[str, Any] = field(default_factory=dict)

    @property
    def family(self) -> str:
        # "shadowsocks2022" is still a shadowsocks link.
        proto = (self.protocol or "").strip().lower()
        return proto[: -len("2022")] if proto.endswith("2022") else proto

    @property
    def has_tls(self) -> bool:
        return (self.tls_mode or "none") != "none"

    @property
    def is_reality(self) -> bool:
        return self.tls_mode == "reality"

    def get(self, key: str, default: Any = "") -> Any:
        value = self.settings.get(key)
        if value is None or value == "":
            return default
        return value

    def text(self, *keys: str, default: str = "") -> str:
        """First non-empty setting among `keys`, as a string."""
        for key in keys:
            value = self.settings.get(key)
            if value is not None and str(value).strip():
                return str(value)
        return default

    @property
    def sni(self) -> str:
        return self.text("sni", "server_name", "host")

    @property
    def fingerprint(self) -> str:
        return self.text("fingerprint", default=DEFAULT_FINGERPRINT)

    @property
    def service_name(self) -> str:
        return self.text("service_name", default=DEFAULT_GRPC_SERVICE)

    @property
    def public_key(self) -> str:
        return self.text("public_key", "reality_public_key")

    @property
    def short_id(self) -> str:
        return self.text("short_id", "reality_short_id")

    @property
    def allow_insecure(self) -> bool:
        return bool(self.settings.get("allow_insecure") or False)

    @property
    def obfs(self) -> str:
        """Hysteria2 obfuscation type; empty when disabled."""
        obfs_type = self.text("obfs_type")
        if obfs_type:
            return obfs_type
        obfs = self.text("obfs")
        return "" if obfs == "none" else obfs

    def alpn(self) -> list[str]:
        value = self.settings.get("alpn")
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        if value:
            return [str(value)]
        return []

    def mbps(self, key: str) -> int:
        value = self.settings.get(key)
        try:
            mbps = int(value)
        except (TypeError, ValueError):
            return DEFAULT_MBPS
        return mbps if mbps > 0 else DEFAULT_MBPS


SUPPORTED_FAMILIES = frozenset({"vless", "trojan", "vmess", "shadowsocks", "hysteria2"})


def is_renderable(ob: Outbound) -> bool:
    """Whether an outbound carries what every output format needs for its protocol."""
    if ob.family not in SUPPORTED_FAMILIES:
        return False
    if not ob.address or not (1 <= int(ob.port) <= 65535):
        return False
    if ob.family in {"vless", "vmess"}:
        return bool(ob.text("uuid"))
    if ob.family == "shadowsocks":
        return bool(ob.text("method")) and bool(ob.text("password"))
    return bool(ob.text("password"))


def drop_none(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: drop_none(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [drop_none(item) for item in value]
    return value
