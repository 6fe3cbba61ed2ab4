from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Mapping

import yaml

from nodehub.settings import Settings

from .system import apply_files, run_command

logger = logging.getLogger("nodehub.agent.apply")

DESIRED_CONFIG_FILE = "desired-config.json"
INBOUNDS_DIR = "inbounds"

_RELOAD_LOCK = threading.Lock()
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class ApplyError(RuntimeError):
    pass


def runtime_root(settings: Settings) -> Path:
    return Path(settings.agent_data_root) / "runtime"


def _inbound_filename(template_id: str) -> str:
    name = _UNSAFE_NAME_CHARS.sub("_", template_id).strip("._") or "template"
    return f"{INBOUNDS_DIR}/{name}.yaml"


def render_inbound(template: Mapping[str, Any], params: Mapping[str, Any]) -> dict[str, Any]:
    defaults = template.get("defaults") if isinstance(template.get("defaults"), Mapping) else {}
    settings = {**defaults, **params}
    return {
        "tag": str(template.get("id") or ""),
        "name": str(template.get("name") or ""),
        "protocol": str(template.get("protocol") or ""),
        "transport": str(template.get("transport") or ""),
        "tls_mode": str(template.get("tls_mode") or "none"),
        "listen": "::",
        "port": settings.get("port"),
        "settings": settings,
    }


def build_runtime_files(desired_config: Mapping[str, Any]) -> dict[str, str]:
    params = desired_config.get("params") if isinstance(desired_config.get("params"), Mapping) else {}
    templates = desired_config.get("templates")
    if not isinstance(templates, list) or not templates:
        raise ApplyError("desired config has no templates")

    files = {DESIRED_CONFIG_FILE: json.dumps(desired_config, ensure_ascii=True, indent=2)}
    for template in templates:
        if not isinstance(template, Mapping) or not template.get("id"):
            raise ApplyError("desired config contains a template without id")
        inbound = render_inbound(template, params)
        files[_inbound_filename(str(template["id"]))] = yaml.safe_dump(
            inbound, sort_keys=False, allow_unicode=True, default_flow_style=False
        )
    return files


def _remove_stale_inbounds(root: Path, keep: set[str]) -> None:
    inbounds = root / INBOUNDS_DIR
    if not inbounds.is_dir():
        return
    for path in inbounds.glob("*.yaml"):
        if f"{INBOUNDS_DIR}/{path.name}" not in keep:
            path.unlink(missing_ok=True)


def _run_reload(settings: Settings) -> str:
    cmd = settings.agent_reload_cmd.strip()
    if not cmd:
        return "no reload command"
    # One reload at a time even if an operator triggers a manual apply.
    with _RELOAD_LOCK:
        ok, out = run_command(cmd, settings.agent_dry_run, timeout=settings.agent_command_timeout_seconds)
    details = (out or "").strip() or "no output"
    if len(details) > 400:
        details = details[:400].rstrip() + "..."
    if not ok:
        raise ApplyError(f"reload command failed: {cmd}: {details}")
    return details


def apply_desired_config(settings: Settings, desired_config: Mapping[str, Any] | None) -> int:
    """Write the snapshot to the runtime directory and reload the proxy; returns the applied revision."""
    if not isinstance(desired_config, Mapping):
        raise ApplyError("desired config is missing")
    try:
        rev = int(desired_config.get("rev") or 0)
    except (TypeError, ValueError):
        raise ApplyError("desired config has an invalid rev") from None
    if rev <= 0:
        raise ApplyError("desired config has an invalid rev")

    files = build_runtime_files(desired_config)
    root = runtime_root(settings)
    root.mkdir(parents=True, exist_ok=True)
    try:
        apply_files(root, files)
    except (OSError, ValueError) as exc:
        raise ApplyError(f"cannot write runtime files: {exc}") from exc
    _remove_stale_inbounds(root, set(files))

    output = _run_reload(settings)
    logger.info("desired_config_applied rev=%s files=%s reload=%s", rev, len(files), output)
    return rev
