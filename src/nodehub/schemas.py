from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from nodehub.enums import NodeType


class HealthResponse(BaseModel):
    status: str


class LoginRequest(BaseModel):
    admin_key: str = ""


class NodeCreate(BaseModel):
    name: str
    node_type: NodeType
    region: str = ""
    tags: list[str] = Field(default_factory=list)
    entry_cdn: str = ""
    entry_direct: str = ""
    entry_ip: str = ""


class NodeUpdate(BaseModel):
    name: str | None = None
    region: str | None = None
    tags: list[str] | None = None
    entry_cdn: str | None = None
    entry_direct: str | None = None
    entry_ip: str | None = None


class TemplateCreate(BaseModel):
    name: str
    protocol: str
    transport: str
    tls_mode: str
    node_types: list[str] = Field(default_factory=list)
    description: str = ""
    defaults: dict[str, Any] = Field(default_factory=dict)


class TemplateUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    node_types: list[str] | None = None
    defaults: dict[str, Any] | None = None


class ReleaseCreate(BaseModel):
    node_ids: list[str] = Field(default_factory=list)
    template_ids: list[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)


class SubscriptionCreate(BaseModel):
    name: str
    enabled: bool = True
    visible_node_ids: list[str] = Field(default_factory=list)
    remark: str = ""


class SubscriptionUpdate(BaseModel):
    name: str | None = None
    enabled: bool | None = None
    visible_node_ids: list[str] | None = None
    remark: str | None = None


class AgentEventsRequest(BaseModel):
    node_id: str = ""
    # Items are validated one by one; a malformed event must not reject the batch.
    events: list[Any] = Field(default_factory=list)
