from __future__ import annotations

import os
import platform
import signal
import socket
import subprocess
from dataclasses import dataclass
from pathlib import Path


def _safe_path(root: Path, relative: str) -> Path:
    path = (root / relative).resolve()
    if root.resolve() not in path.parents and path != root.resolve():
        raise ValueError(f"unsafe path outside root: {relative}")
    return path


def atomic_write(root: Path, relative: str, content: str) -> None:
    path = _safe_path(root, relative)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    tmp.replace(path)


def apply_files(root: Path, files: dict[str, str]) -> None:
    for relative, content in files.items():
        atomic_write(root, relative, content)


def run_command(cmd: str, dry_run: bool, *, timeout: float = 60) -> tuple[bool, str]:
    if dry_run:
        return True, f"dry-run: {cmd}"
    # Own process group so a timeout also kills children started by the shell.
    proc = subprocess.Popen(
        cmd,
        shell=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        start_new_session=True,
    )
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.communicate()
        return False, f"timed out after {timeout}s"
    output = (stdout + "\n" + stderr).strip()
    return proc.returncode == 0, output


def parse_meminfo(text: str) -> tuple[int, int] | None:
    """`(mem_total_kib, mem_available_kib)` from `/proc/meminfo` text."""
    total_kib: int | None = None
    available_kib: int | None = None
    for raw in text.splitlines():
        parts = raw.split()
        if len(parts) < 2:
            continue
        try:
            if parts[0] == "MemTotal:":
                total_kib = int(parts[1])
            elif parts[0] == "MemAvailable:":
                available_kib = int(parts[1])
        except ValueError:
            return None
        if total_kib is not None and available_kib is not None:
            break
    if total_kib is None or available_kib is None:
        return None
    return total_kib, available_kib


def parse_proc_stat(text: str) -> tuple[int, int] | None:
    """`(busy_jiffies, total_jiffies)` from the aggregate `cpu` line of `/proc/stat`."""
    for raw in text.splitlines():
        parts = raw.split()
        if not parts or parts[0] != "cpu":
            continue
        try:
            values = [int(item) for item in parts[1:]]
        except ValueError:
            return None
        if len(values) < 4:
            return None
        # idle + iowait
        idle = values[3] + (values[4] if len(values) > 4 else 0)
        total = sum(values[:8])
        return total - idle, total
    return None


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return None


@dataclass
class MemorySample:
    used_mb: float
    total_mb: float
    usage_percent: float


def read_memory(path: Path = Path("/proc/meminfo")) -> MemorySample | None:
    text = _read_text(path)
    parsed = parse_meminfo(text) if text is not None else None
    if parsed is None:
        return None
    total_kib, available_kib = parsed
    if total_kib <= 0:
        return None
    used_kib = max(0, total_kib - available_kib)
    return MemorySample(
        used_mb=round(used_kib / 1024, 2),
        total_mb=round(total_kib / 1024, 2),
        usage_percent=round(used_kib * 100 / total_kib, 2),
    )


class CpuSampler:
    """CPU usage between two consecutive `/proc/stat` reads; the first call only primes the counters."""

    def __init__(self, path: Path = Path("/proc/stat")) -> None:
        self.path = path
        self._last: tuple[int, int] | None = None

    def sample(self) -> float | None:
        text = _read_text(self.path)
        current = parse_proc_stat(text) if text is not None else None
        if current is None:
            return None
        previous, self._last = self._last, current
        if previous is None:
            return None
        busy_delta = current[0] - previous[0]
        total_delta = current[1] - previous[1]
        if total_delta <= 0 or busy_delta < 0:
            return None
        return round(min(100.0, busy_delta * 100 / total_delta), 2)


def read_app_version(cmd: str, *, timeout: float = 10) -> str:
    if not cmd.strip():
        return ""
    ok, output = run_command(cmd, dry_run=False, timeout=timeout)
    if not ok:
        return ""
    lines = output.splitlines()
    return lines[0].strip() if lines else ""


def host_info() -> str:
    return f"host={socket.gethostname()} os={platform.system()} kernel={platform.release()} python={platform.python_version()}"
