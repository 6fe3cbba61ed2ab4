from __future__ import annotations

from dataclasses import dataclass

from nodehub.client_export.clash import render_clash
from nodehub.client_export.outbound import Outbound
from nodehub.client_export.singbox import render_singbox
from nodehub.client_export.v2ray import render_v2ray
from nodehub.enums import SubscriptionFormat


class SubscriptionFormatError(ValueError):
    pass


@dataclass(frozen=True)
class RenderedSubscription:
    content: bytes
    media_type: str


MEDIA_TYPES: dict[SubscriptionFormat, str] = {
    SubscriptionFormat.V2RAY: "text/plain; charset=utf-8",
    SubscriptionFormat.CLASH: "text/yaml; charset=utf-8",
    SubscriptionFormat.SINGBOX: "application/json; charset=utf-8",
}


def parse_format(fmt: str | None) -> SubscriptionFormat:
    raw = (fmt or SubscriptionFormat.V2RAY.value).strip().lower()
    try:
        return SubscriptionFormat(raw)
    except ValueError:
        raise SubscriptionFormatError(f"Unsupported subscription format: {fmt!r}") from None


def render_subscription(fmt: str | None, outbounds: list[Outbound], name: str = "") -> RenderedSubscription:
    kind = parse_format(fmt)
    if kind is SubscriptionFormat.CLASH:
        body = render_clash(outbounds, name=name)
    elif kind is SubscriptionFormat.SINGBOX:
        body = render_singbox(outbounds)
    else:
        body = render_v2ray(outbounds)
    return RenderedSubscription(content=body.encode("utf-8"), media_type=MEDIA_TYPES[kind])
