"""
Issue model - shared vocabulary for all monitors

Issues are transient: they are produced by one invocation, may trigger a
side effect and a notification, and are then discarded. Only their dedup
key survives, in WatchdogState.known_issues.
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class IssueType(str, Enum):
    CONTAINER = "container"
    RUNAWAY = "runaway"
    MEMORY = "memory"
    STUCK = "stuck"
    SWAP = "swap"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ActionMode(str, Enum):
    """auto: execute immediately, ask: show guidance, deny: alert only"""
    AUTO = "auto"
    ASK = "ask"
    DENY = "deny"


SWAP_ISSUE_KEY = "swap_critical"
CONTAINER_HELD_KEY = "container_unhealthy"

# "<type>:<pid>" - the only keys garbage-collected against a process snapshot
PID_KEY_RE = re.compile(r"^[a-z]+:(\d+)$")


@dataclass
class Issue:
    type: IssueType
    severity: Severity
    message: str
    pid: Optional[str] = None
    command: Optional[str] = None
    auto_killed: Optional[bool] = None

    @property
    def key(self) -> str:
        return issue_key(self)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.type.value,
            'severity': self.severity.value,
            'message': self.message,
        }
        if self.pid is not None:
            data['pid'] = self.pid
        if self.command is not None:
            data['command'] = self.command
        if self.auto_killed is not None:
            data['auto_killed'] = self.auto_killed
        return data


@dataclass
class ProcessInfo:
    """One OS process in one snapshot. Never persisted."""
    pid: str
    cpu: float
    memory_mb: float
    runtime_hours: float
    command: str
    state: str = ""
    elapsed: str = ""


@dataclass
class HealthResult:
    healthy: bool
    response_time: float
    error: Optional[str] = None


@dataclass
class WatchdogState:
    """Durable watchdog state, one per configured state file"""
    last_restart_time: Optional[float] = None
    restart_count: int = 0
    last_check_time: float = field(default_factory=time.time)
    consecutive_failures: int = 0
    known_issues: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatchdogState":
        known = data.get('known_issues') or {}
        last_restart = data.get('last_restart_time')
        return cls(
            last_restart_time=float(last_restart) if last_restart is not None else None,
            restart_count=max(0, int(data.get('restart_count', 0))),
            last_check_time=float(data.get('last_check_time', time.time())),
            consecutive_failures=max(0, int(data.get('consecutive_failures', 0))),
            known_issues={str(k): float(v) for k, v in known.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'last_restart_time': self.last_restart_time,
            'restart_count': self.restart_count,
            'last_check_time': self.last_check_time,
            'consecutive_failures': self.consecutive_failures,
            'known_issues': dict(self.known_issues),
        }


def issue_key(issue: Issue) -> str:
    """
    Dedup key for an issue

    Swap issues share one system-wide key. Issues with a pid key on
    type and pid, everything else on type and message.
    """
    if issue.type == IssueType.SWAP:
        return SWAP_ISSUE_KEY
    if issue.pid:
        return f"{issue.type.value}:{issue.pid}"
    return f"{issue.type.value}:{issue.message}"


def register_issue(known_issues: Dict[str, float], issue: Issue, now: Optional[float] = None) -> bool:
    """Insert the issue's key if absent. Returns True if the issue is new."""
    key = issue_key(issue)
    if key in known_issues:
        return False
    known_issues[key] = now if now is not None else time.time()
    return True


def prune_known_issues(known_issues: Dict[str, float], live_pids: Iterable[str]) -> List[str]:
    """
    Drop per-process issue keys whose pid is gone from the snapshot

    This is how resolved per-process issues auto-clear. Returns the
    removed keys.
    """
    live = set(live_pids)
    removed = []
    for key in list(known_issues):
        match = PID_KEY_RE.match(key)
        if match and match.group(1) not in live:
            del known_issues[key]
            removed.append(key)
    return removed
