from __future__ import annotations

from nodehub.enums import ErrorCode


class NodeHubError(RuntimeError):
    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(NodeHubError):
    code = ErrorCode.VALIDATION
    status_code = 400


class UnauthorizedError(NodeHubError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class NotFoundError(NodeHubError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class ConfigError(NodeHubError):
    code = ErrorCode.CONFIG_ERROR
    status_code = 500
