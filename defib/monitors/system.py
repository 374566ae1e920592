"""
System monitor - swap pressure and stuck (D-state) processes

Swap: one system-wide issue while usage is above threshold, optional
kill/restart remediation, and a "resolved" notice when it drops back.
D-state: alert-only, D-state processes cannot be killed by signal.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from defib.config import SystemConfig
from defib.guidance import Advisor
from defib.host import ProcessInspector
from defib.models import (
    SWAP_ISSUE_KEY,
    ActionMode,
    Issue,
    IssueType,
    ProcessInfo,
    Severity,
    WatchdogState,
    issue_key,
    prune_known_issues,
)
from defib.monitors.processes import matches_any
from defib.notify import Notifier
from defib.policy import ActionPolicy
from defib.probes import ComposeRestarter

logger = logging.getLogger(__name__)

UNINTERRUPTIBLE_STATE = "D"
KERNEL_THREAD_MARKERS = ("kworker/", "jbd2/")


@dataclass
class SwapAssessment:
    total_mb: int
    used_mb: int
    percent: float
    critical: bool
    is_new: bool = False
    resolved: bool = False
    kill_mode: ActionMode = ActionMode.DENY
    restart_mode: ActionMode = ActionMode.DENY


@dataclass
class SwapRemediation:
    killed: List[str] = field(default_factory=list)
    restarted: bool = False
    held: List[str] = field(default_factory=list)

    @property
    def acted(self) -> bool:
        return bool(self.killed) or self.restarted


def swap_percent(total_mb: int, used_mb: int) -> float:
    return (used_mb / total_mb) * 100 if total_mb > 0 else 0.0


def assess_swap(total_mb: int, used_mb: int, known_issues, config: SystemConfig, policy: ActionPolicy) -> SwapAssessment:
    percent = swap_percent(total_mb, used_mb)
    critical = percent > config.swap_threshold
    return SwapAssessment(
        total_mb=total_mb,
        used_mb=used_mb,
        percent=percent,
        critical=critical,
        is_new=critical and SWAP_ISSUE_KEY not in known_issues,
        resolved=not critical and SWAP_ISSUE_KEY in known_issues,
        kill_mode=policy.mode_for(IssueType.SWAP),
        restart_mode=policy.mode_for(IssueType.SWAP, restart=True),
    )


def select_swap_victims(snapshot: List[ProcessInfo], patterns: List[str]) -> List[ProcessInfo]:
    if not patterns:
        return []
    return [proc for proc in snapshot if matches_any(proc.command, patterns)]


def is_transient_wait(elapsed: str) -> bool:
    """Short D-states are normal I/O wait: no minute separator, or under one minute"""
    if ":" not in elapsed or elapsed.startswith("00:0"):
        return True
    parts = elapsed.split(":")
    return len(parts) == 2 and "-" not in elapsed and parts[0] == "00"


def is_kernel_thread(command: str) -> bool:
    return any(marker in command for marker in KERNEL_THREAD_MARKERS)


def find_stuck(snapshot: List[ProcessInfo]) -> List[ProcessInfo]:
    return [
        proc for proc in snapshot
        if proc.state == UNINTERRUPTIBLE_STATE
        and not is_transient_wait(proc.elapsed)
        and not is_kernel_thread(proc.command)
    ]


class SystemMonitor:
    def __init__(
        self,
        config: SystemConfig,
        inspector: ProcessInspector,
        notifier: Notifier,
        policy: ActionPolicy,
        advisor: Optional[Advisor] = None,
        restarter: Optional[ComposeRestarter] = None,
    ):
        self.config = config
        self.inspector = inspector
        self.notifier = notifier
        self.policy = policy
        self.advisor = advisor
        self.restarter = restarter
        self._snapshot: Optional[List[ProcessInfo]] = None

    def run(self, state: WatchdogState, now: Optional[float] = None) -> List[Issue]:
        now = time.time() if now is None else now
        self._snapshot = None

        issues = self.check_swap(state, now)
        if self.config.check_d_state:
            issues.extend(self.check_stuck(state, now))

        if not issues:
            logger.info("✅ System healthy")
        return issues

    def snapshot(self) -> List[ProcessInfo]:
        if self._snapshot is None:
            self._snapshot = self.inspector.snapshot()
        return self._snapshot

    # -- swap -------------------------------------------------------------

    def check_swap(self, state: WatchdogState, now: float) -> List[Issue]:
        try:
            total_mb, used_mb = self.inspector.swap_usage()
        except Exception as e:
            logger.error(f"Failed to check swap: {e}")
            return []

        assessment = assess_swap(total_mb, used_mb, state.known_issues, self.config, self.policy)

        if assessment.resolved:
            del state.known_issues[SWAP_ISSUE_KEY]
            self.notifier.send("Swap Pressure Resolved", f"**Usage:** {assessment.percent:.1f}%")
            return []

        if not assessment.critical:
            logger.debug(f"Swap at {assessment.percent:.1f}%")
            return []

        if assessment.is_new:
            state.known_issues[SWAP_ISSUE_KEY] = now

        remediation = self._remediate_swap(assessment)
        issue = Issue(
            type=IssueType.SWAP,
            severity=Severity.CRITICAL,
            message=f"Swap usage: {assessment.percent:.1f}% ({used_mb}MB / {total_mb}MB)",
        )

        if assessment.is_new or remediation.acted:
            self._notify_swap(assessment, remediation)
        if assessment.is_new and remediation.held and self.advisor is not None:
            self.advisor.advise(IssueType.SWAP, {"swap_percent": assessment.percent})

        return [issue]

    def _remediate_swap(self, assessment: SwapAssessment) -> SwapRemediation:
        remediation = SwapRemediation()

        if self.config.swap_kill_patterns:
            if assessment.kill_mode == ActionMode.AUTO:
                for proc in select_swap_victims(self.snapshot(), self.config.swap_kill_patterns):
                    if self.inspector.kill(proc.pid):
                        logger.info(f"Killed PID {proc.pid}: {proc.command[:60]}")
                        remediation.killed.append(f"PID {proc.pid}: {proc.command[:50]}")
            elif assessment.kill_mode == ActionMode.ASK:
                remediation.held.append("kill")

        target = self.config.swap_restart_compose
        if target and self.restarter is not None:
            if assessment.restart_mode == ActionMode.AUTO:
                logger.info(f"Restarting {target.service_name or 'stack'} to free memory...")
                remediation.restarted = self.restarter.restart_in_place(target.service_name)
            elif assessment.restart_mode == ActionMode.ASK:
                remediation.held.append("restart")

        return remediation

    def _notify_swap(self, assessment: SwapAssessment, remediation: SwapRemediation) -> None:
        details = ""
        if remediation.killed:
            details += f"\n\n**Auto-killed {len(remediation.killed)} process(es):**\n" + "\n".join(remediation.killed)
        if remediation.restarted:
            target = self.config.swap_restart_compose
            details += f"\n\n**Restarted:** {target.service_name or 'compose stack'}"
        if not remediation.acted:
            if remediation.held:
                details = f"\n\n**Remediation awaiting review:** {', '.join(remediation.held)}"
            else:
                details = "\n\n**No auto-remediation configured.** System may become unresponsive."

        self.notifier.send(
            "Swap Critical - Auto-Remediated" if remediation.acted else "Swap Pressure Critical",
            f"**Usage:** {assessment.percent:.1f}%\n"
            f"**Used:** {assessment.used_mb}MB / {assessment.total_mb}MB{details}",
            is_error=not remediation.acted,
        )

    # -- D-state ----------------------------------------------------------

    def check_stuck(self, state: WatchdogState, now: float) -> List[Issue]:
        snapshot = self.snapshot()
        issues = []

        for proc in find_stuck(snapshot):
            issue = Issue(
                type=IssueType.STUCK,
                severity=Severity.WARNING,
                message=f"PID {proc.pid}: Stuck in D-state for {proc.elapsed}",
                pid=proc.pid,
                command=proc.command,
            )
            key = issue_key(issue)
            if key in state.known_issues:
                continue
            state.known_issues[key] = now
            issues.append(issue)
            self.notifier.send(
                "Stuck Process Detected",
                f"**PID:** {proc.pid}\n**Duration:** {proc.elapsed}\n`{proc.command[:100]}`\n\n"
                "**Process in uninterruptible sleep.**",
            )

        if snapshot:
            prune_known_issues(state.known_issues, (p.pid for p in snapshot))
        return issues
