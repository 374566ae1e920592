"""
Process monitor - runaway CPU and memory hog detection

Split in two steps:
  classify() - pure: snapshot + known issues + config -> findings
  execute()  - kills, notifications, guidance, known-issue bookkeeping
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from defib.config import ProcessConfig
from defib.guidance import Advisor
from defib.host import ProcessInspector
from defib.models import (
    ActionMode,
    Issue,
    IssueType,
    ProcessInfo,
    Severity,
    WatchdogState,
    issue_key,
    prune_known_issues,
)
from defib.notify import Notifier
from defib.policy import ActionPolicy

logger = logging.getLogger(__name__)

# Memory hogs are only flagged once they've been around this long
MEMORY_MIN_RUNTIME_HOURS = 1.0


def matches_any(command: str, patterns: Iterable[str]) -> bool:
    """
    Plain substring containment, not anchored, not regex.

    Every pattern list (ignore, safe-to-kill, swap-kill) goes through this
    one predicate. Kill lists are guarded by validate_patterns.
    """
    return any(pattern in command for pattern in patterns)


@dataclass
class Finding:
    """One flagged condition for one process, before any side effect"""
    issue_type: IssueType
    process: ProcessInfo
    mode: ActionMode
    safe: bool
    is_new: bool

    @property
    def should_kill(self) -> bool:
        return self.issue_type == IssueType.RUNAWAY and self.mode == ActionMode.AUTO and self.safe

    @property
    def details(self) -> Dict[str, Any]:
        data = {
            "pid": self.process.pid,
            "command": self.process.command,
            "runtime_hours": self.process.runtime_hours,
        }
        if self.issue_type == IssueType.RUNAWAY:
            data["cpu"] = self.process.cpu
        else:
            data["memory_mb"] = self.process.memory_mb
        return data


def runaway_message(proc: ProcessInfo) -> str:
    return f"PID {proc.pid}: {proc.cpu}% CPU for {proc.runtime_hours:.1f}h"


def memory_message(proc: ProcessInfo) -> str:
    return f"PID {proc.pid}: {proc.memory_mb:.0f}MB memory"


def classify(
    snapshot: List[ProcessInfo],
    known_issues: Dict[str, float],
    config: ProcessConfig,
    policy: ActionPolicy,
) -> List[Finding]:
    """Evaluate runaway and memory conditions for every process (both may fire)"""
    findings = []
    for proc in snapshot:
        if (
            proc.cpu > config.cpu_threshold
            and proc.runtime_hours > config.max_runtime_hours
            and not matches_any(proc.command, config.ignore_patterns)
        ):
            safe = matches_any(proc.command, config.safe_to_kill_patterns)
            key = issue_key(Issue(IssueType.RUNAWAY, Severity.CRITICAL, "", pid=proc.pid))
            findings.append(Finding(
                issue_type=IssueType.RUNAWAY,
                process=proc,
                mode=policy.mode_for(IssueType.RUNAWAY, safe=safe),
                safe=safe,
                is_new=key not in known_issues,
            ))

        if proc.memory_mb > config.memory_threshold_mb and proc.runtime_hours > MEMORY_MIN_RUNTIME_HOURS:
            key = issue_key(Issue(IssueType.MEMORY, Severity.WARNING, "", pid=proc.pid))
            findings.append(Finding(
                issue_type=IssueType.MEMORY,
                process=proc,
                mode=policy.mode_for(IssueType.MEMORY),
                safe=False,
                is_new=key not in known_issues,
            ))
    return findings


class ProcessMonitor:
    def __init__(
        self,
        config: ProcessConfig,
        inspector: ProcessInspector,
        notifier: Notifier,
        policy: ActionPolicy,
        advisor: Optional[Advisor] = None,
    ):
        self.config = config
        self.inspector = inspector
        self.notifier = notifier
        self.policy = policy
        self.advisor = advisor

    def run(self, state: WatchdogState, now: Optional[float] = None) -> List[Issue]:
        now = time.time() if now is None else now
        snapshot = self.inspector.snapshot()
        if not snapshot:
            logger.warning("⚠️  No processes found in snapshot")

        findings = classify(snapshot, state.known_issues, self.config, self.policy)
        issues = self.execute(findings, state, now)

        if snapshot:
            removed = prune_known_issues(state.known_issues, (p.pid for p in snapshot))
            if removed:
                logger.info(f"Cleared {len(removed)} resolved issue(s): {', '.join(removed)}")

        if not issues:
            logger.info("✅ Processes healthy")
        return issues

    def execute(self, findings: List[Finding], state: WatchdogState, now: float) -> List[Issue]:
        issues = []
        for finding in findings:
            if finding.issue_type == IssueType.RUNAWAY:
                issue = self._handle_runaway(finding)
            else:
                issue = self._handle_memory(finding)

            if not finding.is_new:
                continue
            state.known_issues[issue.key] = now
            issues.append(issue)
            self._report(finding, issue)
        return issues

    def _handle_runaway(self, finding: Finding) -> Issue:
        proc = finding.process
        killed = False
        if finding.should_kill:
            killed = self.inspector.kill(proc.pid)
            if killed:
                logger.info(f"Killed PID {proc.pid}: {proc.command[:60]}")

        return Issue(
            type=IssueType.RUNAWAY,
            severity=Severity.WARNING if killed else Severity.CRITICAL,
            message=runaway_message(proc),
            pid=proc.pid,
            command=proc.command,
            auto_killed=killed,
        )

    @staticmethod
    def _handle_memory(finding: Finding) -> Issue:
        proc = finding.process
        return Issue(
            type=IssueType.MEMORY,
            severity=Severity.WARNING,
            message=memory_message(proc),
            pid=proc.pid,
            command=proc.command,
        )

    def _report(self, finding: Finding, issue: Issue) -> None:
        """Notify or guide for a new issue, depending on the action mode"""
        proc = finding.process
        if finding.mode == ActionMode.ASK and self.advisor is not None:
            self.advisor.advise(finding.issue_type, finding.details)
            return

        if finding.issue_type == IssueType.MEMORY:
            self.notifier.send(
                "High Memory Process",
                f"**PID:** {proc.pid}\n**Memory:** {proc.memory_mb:.0f}MB\n"
                f"**Runtime:** {proc.runtime_hours:.1f}h\n`{proc.command[:100]}`",
            )
        elif issue.auto_killed:
            self.notifier.send(
                "Runaway Process Killed",
                f"**PID:** {proc.pid}\n**CPU:** {proc.cpu}%\n"
                f"**Runtime:** {proc.runtime_hours:.1f}h\n`{proc.command[:100]}`",
            )
        else:
            self.notifier.send(
                "Runaway Process Detected",
                f"**PID:** {proc.pid}\n**CPU:** {proc.cpu}%\n"
                f"**Runtime:** {proc.runtime_hours:.1f}h\n`{proc.command[:100]}`\n\n"
                "**Manual intervention may be required.**",
                is_error=True,
            )
