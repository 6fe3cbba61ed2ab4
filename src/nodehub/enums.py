from enum import Enum


class NodeType(str, Enum):
    VPS = "vps"
    EDGE = "edge"


class ReleaseStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    OK = "ok"
    FAILED = "failed"


class NodeState(str, Enum):
    IDLE = "idle"
    CONVERGED = "converged"
    PENDING = "pending"
    FAILED = "failed"


class TemplateKind(str, Enum):
    BUILTIN = "builtin"
    CUSTOM = "custom"


class ReleaseResultStatus(str, Enum):
    QUEUED = "queued"
    FAILED = "failed"


class AgentEventType(str, Enum):
    APPLY_RESULT = "apply_result"


class SubscriptionFormat(str, Enum):
    V2RAY = "v2ray"
    CLASH = "clash"
    SINGBOX = "singbox"


class ErrorCode(str, Enum):
    VALIDATION = "VALIDATION"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    CONFIG_ERROR = "CONFIG_ERROR"
    INTERNAL = "INTERNAL"
