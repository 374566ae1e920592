"""
Container monitor - health check + backoff-gated restart

State machine per invocation:
  backoff -> probe -> healthy (reset counters)
                   -> unhealthy -> restart -> re-probe -> recovered | failed
Restarts are rate-limited to one per backoff window, however often the
monitor is invoked.
"""

import logging
import time
from typing import List, Optional, Tuple

from defib.config import ContainerConfig
from defib.guidance import Advisor
from defib.models import CONTAINER_HELD_KEY, ActionMode, Issue, IssueType, Severity, WatchdogState
from defib.notify import Notifier
from defib.policy import ActionPolicy
from defib.probes import ComposeRestarter, HealthProbe, compose_command

logger = logging.getLogger(__name__)


def in_backoff(state: WatchdogState, now: float, backoff_minutes: float) -> Tuple[bool, float]:
    """Returns (in_backoff, minutes_since_last_restart)"""
    if state.last_restart_time is None:
        return False, 0.0
    minutes_since = (now - state.last_restart_time) / 60
    return minutes_since < backoff_minutes, minutes_since


class ContainerMonitor:
    def __init__(
        self,
        config: ContainerConfig,
        probe: HealthProbe,
        restarter: ComposeRestarter,
        notifier: Notifier,
        policy: ActionPolicy,
        advisor: Optional[Advisor] = None,
    ):
        self.config = config
        self.probe = probe
        self.restarter = restarter
        self.notifier = notifier
        self.policy = policy
        self.advisor = advisor

    def run(self, state: WatchdogState, now: Optional[float] = None) -> List[Issue]:
        now = time.time() if now is None else now

        backing_off, minutes_since = in_backoff(state, now, self.config.backoff_minutes)
        if backing_off:
            logger.info(f"In backoff ({minutes_since:.1f}/{self.config.backoff_minutes:g} min), skipping")
            return []

        try:
            health = self.probe.check()
        except Exception as e:
            logger.error(f"Health probe failed unexpectedly: {e}", exc_info=True)
            return []

        if health.healthy:
            logger.info(f"✅ Container healthy ({health.response_time:.2f}s)")
            state.restart_count = 0
            state.consecutive_failures = 0
            if state.known_issues.pop(CONTAINER_HELD_KEY, None) is not None:
                self.notifier.send("Container Recovered", f"**Response time:** {health.response_time:.2f}s")
            return []

        state.consecutive_failures += 1
        logger.warning(f"🚨 Container unhealthy: {health.error} (failure #{state.consecutive_failures})")

        mode = self.policy.mode_for(IssueType.CONTAINER)
        if mode != ActionMode.AUTO:
            return [self._hold_restart(state, now, mode, health.error)]

        try:
            success = self.restarter.restart(self.config.service_name)
        except Exception as e:
            logger.error(f"Restart raised: {e}", exc_info=True)
            success = False

        state.last_restart_time = now
        state.restart_count += 1

        if success:
            state.consecutive_failures = 0
            logger.info("✅ Restart successful")
            self.notifier.send(
                "Container Restarted",
                f"**Reason:** {health.error}\n"
                f"**Restart count:** {state.restart_count}\n"
                f"**Backoff:** {self.config.backoff_minutes:g} min",
            )
            return []

        logger.error("Restart FAILED - manual intervention needed")
        self.notifier.send(
            "Container Restart FAILED",
            f"**Error:** {health.error}\n**Manual intervention required.**",
            is_error=True,
        )
        return [Issue(
            type=IssueType.CONTAINER,
            severity=Severity.CRITICAL,
            message=f"Container restart failed: {health.error}",
        )]

    def _hold_restart(self, state: WatchdogState, now: float, mode: ActionMode, error: Optional[str]) -> Issue:
        """
        Restart not allowed automatically: recommend it (ask) or only alert (deny)

        The issue is returned on every unhealthy run, but guidance or the
        alert goes out once until the container is healthy again.
        """
        issue = Issue(
            type=IssueType.CONTAINER,
            severity=Severity.CRITICAL,
            message=f"Container unhealthy: {error}",
        )
        if CONTAINER_HELD_KEY in state.known_issues:
            logger.info("Container still unhealthy, already reported")
            return issue
        state.known_issues[CONTAINER_HELD_KEY] = now

        if mode == ActionMode.ASK and self.advisor is not None:
            self.advisor.advise(IssueType.CONTAINER, {
                "health_url": self.config.health_url,
                "compose_dir": self.config.compose_dir,
                "service_name": self.config.service_name,
                "compose": compose_command(self.restarter.runtime),
            })
        else:
            self.notifier.send(
                "Container Unhealthy",
                f"**Error:** {error}\n**Automatic restart disabled ({mode.value}).**",
                is_error=True,
            )
        return issue
