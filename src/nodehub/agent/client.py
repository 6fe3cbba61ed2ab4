from __future__ import annotations

from typing import Any

import httpx


class ControlPlaneError(RuntimeError):
    def __init__(self, *, status_code: int, path: str, code: str, detail: str) -> None:
        self.status_code = int(status_code)
        self.path = path
        self.code = code
        self.detail = detail
        super().__init__(f"{status_code} {path}: {code} {detail}".strip())


class ControlPlaneClient:
    """Agent side of the reconcile protocol. Every call unwraps the `{success, data}` envelope."""

    def __init__(
        self,
        base_url: str,
        node_id: str,
        token: str,
        *,
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.node_id = node_id
        self.token = token
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        headers["X-Node-Token"] = self.token
        response = await self._client.request(method, path, headers=headers, **kwargs)

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            raise ControlPlaneError(
                status_code=response.status_code, path=path, code="BAD_RESPONSE", detail=response.text[:200]
            )
        if response.status_code >= 400 or not body.get("success"):
            error = body.get("error") if isinstance(body.get("error"), dict) else {}
            raise ControlPlaneError(
                status_code=response.status_code,
                path=path,
                code=str(error.get("code") or ""),
                detail=str(error.get("message") or response.text[:200]),
            )
        return body.get("data")

    async def close(self) -> None:
        await self._client.aclose()

    async def heartbeat(self, report: dict[str, Any] | None = None) -> dict:
        params = {"node_id": self.node_id}
        if report:
            return await self._request("POST", "/agent/heartbeat", params=params, json=report)
        return await self._request("GET", "/agent/heartbeat", params=params)

    async def reconcile(self, current_version: int) -> dict:
        params = {"node_id": self.node_id, "current_version": str(int(current_version))}
        return await self._request("GET", "/agent/reconcile", params=params)

    async def send_events(self, events: list[dict[str, Any]]) -> dict:
        return await self._request("POST", "/agent/events", json={"node_id": self.node_id, "events": events})
