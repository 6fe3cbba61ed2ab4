from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

import anyio
import httpx
from prometheus_client import Counter, start_http_server

from nodehub.enums import AgentEventType, ReleaseStatus
from nodehub.observability import configure_logging
from nodehub.settings import Settings, ensure_agent_dirs, get_settings
from nodehub.version import app_version

from .apply import ApplyError, apply_desired_config
from .client import ControlPlaneClient, ControlPlaneError
from .state import AgentStateStore
from .system import CpuSampler, host_info, read_app_version, read_memory

logger = logging.getLogger("nodehub.agent")

_LOOP_TICKS = Counter(
    "nodehub_agent_loop_ticks_total",
    "Agent loop iterations by loop and result",
    labelnames=["loop", "result"],
)
_APPLY_TOTAL = Counter(
    "nodehub_agent_apply_total",
    "Desired config apply attempts by result",
    labelnames=["result"],
)

ERROR_MAX_LENGTH = 512


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def apply_result_event(status: ReleaseStatus, *, applied_version: int | None, message: str) -> dict[str, Any]:
    return {
        "event_id": uuid.uuid4().hex,
        "type": AgentEventType.APPLY_RESULT.value,
        "status": status.value,
        "applied_version": applied_version,
        "message": message[:ERROR_MAX_LENGTH],
        "occurred_at": _utcnow_iso(),
    }


class NodeAgent:
    def __init__(
        self,
        settings: Settings,
        client: ControlPlaneClient,
        state: AgentStateStore,
        *,
        cpu: CpuSampler | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.state = state
        self.cpu = cpu or CpuSampler()
        self.last_error = ""

    def collect_report(self) -> dict[str, Any]:
        memory = read_memory()
        return {
            "cpu_usage_percent": self.cpu.sample(),
            "memory_used_mb": memory.used_mb if memory else None,
            "memory_total_mb": memory.total_mb if memory else None,
            "memory_usage_percent": memory.usage_percent if memory else None,
            "protocol_app_version": read_app_version(
                self.settings.agent_app_version_cmd, timeout=self.settings.agent_command_timeout_seconds
            ),
            "deploy_info": f"nodehub-agent {app_version()} {host_info()}",
            "error": self.last_error,
        }

    async def heartbeat_once(self) -> dict:
        report = await anyio.to_thread.run_sync(self.collect_report)
        return await self.client.heartbeat(report)

    async def reconcile_once(self) -> dict:
        local_version = self.state.applied_version()
        result = await self.client.reconcile(local_version)

        if result.get("needs_update"):
            desired_version = int(result.get("desired_version") or 0)
            logger.info("apply_started current=%s desired=%s", local_version, desired_version)
            try:
                rev = await anyio.to_thread.run_sync(apply_desired_config, self.settings, result.get("desired_config"))
            except ApplyError as exc:
                self.last_error = f"apply: {exc}"[:ERROR_MAX_LENGTH]
                _APPLY_TOTAL.labels("failed").inc()
                logger.warning("apply_failed desired=%s error=%s", desired_version, exc)
                self.state.enqueue(
                    apply_result_event(ReleaseStatus.FAILED, applied_version=None, message=str(exc))
                )
            else:
                self.last_error = ""
                _APPLY_TOTAL.labels("ok").inc()
                self.state.set_applied_version(rev)
                self.state.enqueue(
                    apply_result_event(ReleaseStatus.OK, applied_version=rev, message=f"release applied v{rev}")
                )

        await self.flush_events_once()
        return result

    async def flush_events_once(self) -> int:
        """Send queued events in batches; a batch is removed locally only after the server accepted it."""
        sent = 0
        batch_size = max(1, self.settings.agent_event_batch_size)
        while True:
            batch = self.state.pending(batch_size)
            if not batch:
                return sent
            await self.client.send_events([item.payload for item in batch])
            self.state.ack([item.seq for item in batch])
            sent += len(batch)
            if len(batch) < batch_size:
                return sent

    async def _tick(self, loop: str, fn: Callable[[], Awaitable[Any]]) -> bool:
        try:
            await fn()
        except (ControlPlaneError, httpx.HTTPError) as exc:
            self.last_error = f"{loop}: {exc}"[:ERROR_MAX_LENGTH]
            _LOOP_TICKS.labels(loop, "error").inc()
            logger.warning("loop_tick_failed loop=%s error=%s", loop, exc)
            return False
        except Exception as exc:
            # The loop must outlive any single failure; next tick retries.
            self.last_error = f"{loop}: {exc}"[:ERROR_MAX_LENGTH]
            _LOOP_TICKS.labels(loop, "error").inc()
            logger.exception("loop_tick_crashed loop=%s", loop)
            return False
        _LOOP_TICKS.labels(loop, "ok").inc()
        return True

    async def heartbeat_loop(self) -> None:
        while True:
            await self._tick("heartbeat", self.heartbeat_once)
            await asyncio.sleep(max(1, self.settings.agent_heartbeat_seconds))

    async def reconcile_loop(self) -> None:
        while True:
            await self._tick("reconcile", self.reconcile_once)
            await asyncio.sleep(max(1, self.settings.agent_reconcile_seconds))


def build_agent(settings: Settings) -> NodeAgent:
    if not settings.agent_node_id or not settings.agent_node_token:
        raise RuntimeError("AGENT_NODE_ID and AGENT_NODE_TOKEN are required")
    ensure_agent_dirs(settings)
    client = ControlPlaneClient(
        settings.agent_api_base,
        settings.agent_node_id,
        settings.agent_node_token,
        timeout=settings.agent_request_timeout_seconds,
    )
    return NodeAgent(settings, client, AgentStateStore(Path(settings.agent_data_root)))


async def _serve(agent: NodeAgent) -> None:
    try:
        await asyncio.gather(agent.heartbeat_loop(), agent.reconcile_loop())
    finally:
        await agent.client.close()


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    agent = build_agent(settings)
    if settings.agent_metrics_enabled:
        start_http_server(settings.agent_metrics_port, addr=settings.agent_metrics_host)
    logger.info(
        "agent_started node_id=%s api_base=%s dry_run=%s",
        settings.agent_node_id,
        settings.agent_api_base,
        settings.agent_dry_run,
    )
    asyncio.run(_serve(agent))


if __name__ == "__main__":
    run()
