"""
Host inspection - process snapshots, kill primitive, swap usage

Thin psutil adapter. Snapshots mirror what `ps -eo pid,pcpu,rss,etime,state,args`
reports so thresholds behave the same as with the classic tools.
"""

import logging
import os
import shutil
import time
from typing import Callable, List, Optional, Tuple

import psutil

from defib.errors import ConfigurationError
from defib.models import ProcessInfo

logger = logging.getLogger(__name__)

# psutil status -> ps scheduler state code
STATE_CODES = {
    psutil.STATUS_RUNNING: "R",
    psutil.STATUS_SLEEPING: "S",
    psutil.STATUS_DISK_SLEEP: "D",
    psutil.STATUS_STOPPED: "T",
    psutil.STATUS_TRACING_STOP: "t",
    psutil.STATUS_ZOMBIE: "Z",
    psutil.STATUS_DEAD: "X",
    psutil.STATUS_IDLE: "I",
    psutil.STATUS_WAKING: "W",
    psutil.STATUS_PARKED: "P",
}

SNAPSHOT_ATTRS = ["pid", "name", "cmdline", "memory_info", "create_time", "cpu_times", "status"]


def format_etime(seconds: float) -> str:
    """Format elapsed seconds the way ps does: [[DD-]hh:]mm:ss"""
    total = max(0, int(seconds))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days:02d}-{hours:02d}:{minutes:02d}:{secs:02d}"
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def detect_runtime() -> str:
    """Return 'docker' or 'podman', whichever is on PATH (docker first)"""
    for runtime in ("docker", "podman"):
        if shutil.which(runtime):
            return runtime
    raise ConfigurationError("Neither docker nor podman found in PATH")


class ProcessInspector:
    """Process snapshot, kill and swap reading for the local host"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.own_pid = os.getpid()

    def snapshot(self) -> List[ProcessInfo]:
        """
        Take a snapshot of all processes

        Returns an empty list if the process table cannot be read.
        """
        now = self.clock()
        processes = []
        try:
            for proc in psutil.process_iter(SNAPSHOT_ATTRS):
                info = self._to_process_info(proc.info, now)
                if info:
                    processes.append(info)
        except psutil.Error as e:
            logger.error(f"Failed to get process list: {e}")
            return []

        processes.sort(key=lambda p: p.cpu, reverse=True)
        return processes

    def _to_process_info(self, info: dict, now: float) -> Optional[ProcessInfo]:
        pid = info.get("pid")
        if pid is None or pid == self.own_pid:
            return None

        create_time = info.get("create_time") or now
        elapsed = max(0.0, now - create_time)

        cpu_times = info.get("cpu_times")
        cpu = 0.0
        if cpu_times is not None and elapsed > 0:
            cpu = round((cpu_times.user + cpu_times.system) / elapsed * 100, 1)

        memory_info = info.get("memory_info")
        memory_mb = memory_info.rss / 1024 / 1024 if memory_info is not None else 0.0

        cmdline = info.get("cmdline")
        command = " ".join(cmdline) if cmdline else f"[{info.get('name') or '?'}]"

        return ProcessInfo(
            pid=str(pid),
            cpu=cpu,
            memory_mb=memory_mb,
            runtime_hours=elapsed / 3600,
            command=command,
            state=STATE_CODES.get(info.get("status"), "?"),
            elapsed=format_etime(elapsed),
        )

    def kill(self, pid: str) -> bool:
        """Send SIGTERM to a process. Returns True if the signal was delivered."""
        try:
            psutil.Process(int(pid)).terminate()
            return True
        except (psutil.NoSuchProcess, psutil.AccessDenied, ValueError) as e:
            logger.warning(f"Could not kill PID {pid}: {e}")
            return False

    def swap_usage(self) -> Tuple[int, int]:
        """Return (total_mb, used_mb)"""
        swap = psutil.swap_memory()
        return swap.total // (1024 * 1024), swap.used // (1024 * 1024)
