"""
Human-friendly guidance for "ask" mode

When remediation needs a human in the loop, defib prints what is wrong,
why it matters, the command that would fix it, and how to dismiss the
alert.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from defib.diagnosis import DiagnosisClient
from defib.models import IssueType

logger = logging.getLogger(__name__)

RULE = "=" * 60


@dataclass
class Guidance:
    title: str
    problem: str
    why: str
    recommendation: str
    fix_command: str
    investigate_commands: List[str] = field(default_factory=list)
    dismiss_command: str = ""


def generate_guidance(issue_type: IssueType, details: Dict[str, Any]) -> Guidance:
    pid = details.get("pid")
    short_command = (details.get("command") or "unknown")[:60]
    runtime_hours = details.get("runtime_hours") or 0.0

    if issue_type == IssueType.RUNAWAY:
        return Guidance(
            title="ISSUE DETECTED: Runaway Process",
            problem=(
                f"PID {pid} is using {details.get('cpu', 0):.0f}% CPU and has been running "
                f"for {runtime_hours:.1f} hours.\nProcess: {short_command}"
            ),
            why=(
                "This process is consuming almost all available CPU, which slows down everything "
                f"else on your system. After {runtime_hours:.0f}+ hours at this level, it's likely "
                "stuck in a loop rather than doing useful work."
            ),
            recommendation=(
                "Kill the process. It will free up CPU immediately. If this is a managed service "
                "(PM2, systemd, Docker), it will auto-restart fresh."
            ),
            fix_command=f"kill {pid}",
            investigate_commands=[
                f"ps -p {pid} -o pid,pcpu,pmem,etime,args",
                f"cat /proc/{pid}/wchan 2>/dev/null",
                f"ls -la /proc/{pid}/fd 2>/dev/null | wc -l",
            ],
            dismiss_command=f"defib dismiss {pid}",
        )

    if issue_type == IssueType.MEMORY:
        return Guidance(
            title="ISSUE DETECTED: High Memory Process",
            problem=(
                f"PID {pid} is using {details.get('memory_mb', 0):.0f}MB of memory.\n"
                f"Process: {short_command}"
            ),
            why=(
                "This process is consuming a large amount of RAM, which can cause swap pressure "
                "and slow down your entire system. If it keeps growing, the system may become "
                "unresponsive."
            ),
            recommendation=(
                "If this memory usage is unexpected, kill the process. If it's normal for this "
                "application, add it to the ignore list."
            ),
            fix_command=f"kill {pid}",
            investigate_commands=[
                f"ps -p {pid} -o pid,rss,vsz,pmem,args",
                f'grep -E "VmRSS|VmSwap" /proc/{pid}/status',
            ],
            dismiss_command=f"defib dismiss {pid}",
        )

    if issue_type == IssueType.SWAP:
        return Guidance(
            title="ISSUE DETECTED: Critical Swap Pressure",
            problem=f"Swap usage is at {details.get('swap_percent', 0):.1f}%, which is critically high.",
            why=(
                "The system is running out of physical memory and is paging heavily to disk. "
                "Everything becomes extremely slow and applications may crash or the host may freeze."
            ),
            recommendation=(
                "Kill memory-hungry processes that aren't essential, or restart services known to "
                "leak memory."
            ),
            fix_command="# Find top memory consumers:\nps aux --sort=-%mem | head -20",
            investigate_commands=[
                "free -h",
                "ps aux --sort=-%mem | head -10",
                'grep -E "MemFree|SwapFree|Cached" /proc/meminfo',
            ],
            dismiss_command="# Swap alerts auto-clear when usage drops below threshold",
        )

    if issue_type == IssueType.STUCK:
        return Guidance(
            title="ISSUE DETECTED: Stuck Process (D-state)",
            problem=f"PID {pid} is stuck in uninterruptible sleep (D-state).\nProcess: {short_command}",
            why=(
                "D-state means the process is waiting on I/O and cannot be interrupted. Persisting "
                "for a long time usually points at a failed disk, an NFS hang, or a kernel issue."
            ),
            recommendation=(
                "Investigate what it is waiting on. D-state processes cannot be killed until the "
                "I/O completes, so the underlying cause has to be fixed."
            ),
            fix_command="# D-state processes are typically unkillable. Check the underlying issue first.",
            investigate_commands=[
                f"cat /proc/{pid}/wchan 2>/dev/null",
                f"cat /proc/{pid}/io 2>/dev/null",
                'dmesg | tail -50 | grep -i -E "error|fail|timeout"',
            ],
            dismiss_command=f"defib dismiss {pid}",
        )

    compose = details.get("compose", "docker-compose")
    compose_dir = details.get("compose_dir")
    service_name = details.get("service_name")
    health_url = details.get("health_url")
    if service_name:
        fix_command = f"cd {compose_dir} && {compose} restart {service_name}"
    else:
        fix_command = f"cd {compose_dir} && {compose} down && {compose} up -d"
    return Guidance(
        title="ISSUE DETECTED: Unhealthy Container",
        problem=f"Container health check failed.\nHealth URL: {health_url}",
        why=(
            "The container is not responding to health checks: the service inside is crashed, "
            "hung, or overloaded. Users and dependent services may be affected."
        ),
        recommendation=(
            "Restart the container. If this happens repeatedly, check the application logs for "
            "the root cause."
        ),
        fix_command=fix_command,
        investigate_commands=[
            f"curl -v {health_url}",
            f"cd {compose_dir} && {compose} logs --tail=50",
            f"cd {compose_dir} && {compose} ps",
        ],
        dismiss_command="# Container alerts auto-clear when health check passes",
    )


def render_guidance(guidance: Guidance, diagnosis: Optional[str] = None) -> str:
    """Render guidance as a plain-text block. A diagnosis replaces why/recommendation."""
    lines = [RULE, f"🔴 {guidance.title}", RULE, "", guidance.problem, ""]

    if diagnosis:
        lines.extend(["AI DIAGNOSIS:", diagnosis, ""])
    else:
        lines.extend([
            "WHY THIS IS A PROBLEM:", guidance.why, "",
            "RECOMMENDED FIX:", guidance.recommendation, "",
        ])

    lines.append("TO FIX, RUN:")
    lines.extend(f"  {line}" for line in guidance.fix_command.splitlines())
    lines.extend(["", "TO INVESTIGATE FIRST:"])
    lines.extend(f"  {cmd}" for cmd in guidance.investigate_commands)
    lines.extend(["", "TO IGNORE THIS ALERT:", f"  {guidance.dismiss_command}", RULE])
    return "\n".join(lines)


class Advisor:
    """Builds guidance, optionally enriched with a diagnosis, and shows it"""

    DIAGNOSIS_TYPES = {
        IssueType.RUNAWAY: "runaway_process",
        IssueType.MEMORY: "high_memory",
        IssueType.SWAP: "swap_pressure",
        IssueType.STUCK: "stuck_process",
        IssueType.CONTAINER: "unhealthy_container",
    }

    def __init__(self, diagnosis: Optional[DiagnosisClient] = None, output: Callable[[str], None] = print):
        self.diagnosis = diagnosis
        self.output = output

    def advise(self, issue_type: IssueType, details: Dict[str, Any]) -> Guidance:
        guidance = generate_guidance(issue_type, details)
        diagnosis_text = None
        if self.diagnosis is not None and self.diagnosis.enabled:
            diagnosis_text = self.diagnosis.diagnose(self.DIAGNOSIS_TYPES[issue_type], details)
        self.output("\n" + render_guidance(guidance, diagnosis_text) + "\n")
        logger.info(f"Guidance shown: {guidance.title}")
        return guidance
