"""
Watchdog invocation - load state, run monitors, persist state

One invocation is one pass: no loop, no scheduler. Monitors run in
sequence and share the in-memory WatchdogState; it is written once at the
end, and only that persisted state carries over to the next invocation.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from defib.config import DefibConfig, ProcessConfig, SystemConfig, check_config_safety
from defib.diagnosis import DiagnosisClient
from defib.errors import ConfigurationError
from defib.guidance import Advisor
from defib.host import ProcessInspector, detect_runtime
from defib.models import Issue, Severity, WatchdogState
from defib.monitors import ContainerMonitor, ProcessMonitor, SystemMonitor
from defib.notify import Notifier
from defib.policy import ActionPolicy
from defib.probes import ComposeRestarter, HealthProbe
from defib.state import StateStore
from defib.validation import validate_path

logger = logging.getLogger(__name__)

TARGETS = ("container", "processes", "system")


@dataclass
class RunReport:
    timestamp: str
    targets: List[str]
    issues: List[Issue] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def critical_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == Severity.CRITICAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'targets': list(self.targets),
            'issues': [issue.to_dict() for issue in self.issues],
            'errors': dict(self.errors),
            'duration_seconds': round(self.duration_seconds, 3),
        }


class Watchdog:
    """
    Runs one monitoring pass over the configured targets

    Collaborators can be injected; by default they are built from the
    configuration.
    """

    def __init__(
        self,
        config: DefibConfig,
        store: Optional[StateStore] = None,
        inspector: Optional[ProcessInspector] = None,
        notifier: Optional[Notifier] = None,
        advisor: Optional[Advisor] = None,
        clock: Callable[[], float] = time.time,
        runtime_detector: Callable[[], str] = detect_runtime,
    ):
        self.config = config
        self.store = store or StateStore(config.state_file)
        self.inspector = inspector or ProcessInspector()
        self.notifier = notifier or Notifier(config.webhook_url)
        self.advisor = advisor or Advisor(DiagnosisClient(config.ai))
        self.policy = ActionPolicy(config.actions)
        self.clock = clock
        self.runtime_detector = runtime_detector
        self._runtime: Optional[str] = None

    @property
    def runtime(self) -> str:
        if self._runtime is None:
            configured = self.config.container.container_runtime if self.config.container else None
            self._runtime = configured or self.runtime_detector()
            logger.info(f"Container runtime: {self._runtime}")
        return self._runtime

    def build_monitor(self, target: str):
        if target == "container":
            container = self.config.container
            if container is None:
                raise ConfigurationError("Container monitoring requires --health and --compose-dir")
            probe = HealthProbe(container.health_url, container.timeout_seconds, container.max_response_seconds)
            return ContainerMonitor(
                container,
                probe=probe,
                restarter=ComposeRestarter(container.compose_dir, self.runtime, probe=probe),
                notifier=self.notifier,
                policy=self.policy,
                advisor=self.advisor,
            )

        if target == "processes":
            return ProcessMonitor(
                self.config.processes or ProcessConfig(),
                inspector=self.inspector,
                notifier=self.notifier,
                policy=self.policy,
                advisor=self.advisor,
            )

        if target == "system":
            system = self.config.system or SystemConfig()
            restarter = None
            if system.swap_restart_compose:
                restarter = ComposeRestarter(system.swap_restart_compose.compose_dir, self.runtime)
            return SystemMonitor(
                system,
                inspector=self.inspector,
                notifier=self.notifier,
                policy=self.policy,
                advisor=self.advisor,
                restarter=restarter,
            )

        raise ConfigurationError(f"Unknown monitor target: {target}")

    def run(self, targets: Sequence[str]) -> RunReport:
        """
        Run the given monitors once and persist state.

        Raises:
            ConfigurationError: Unsafe or incomplete configuration (before
                any monitor runs)
            StateError: State could not be persisted
        """
        start_time = self.clock()
        check_config_safety(self.config)
        monitors = [(target, self.build_monitor(target)) for target in targets]

        report = RunReport(timestamp=datetime.now().isoformat(), targets=list(targets))
        state = self.store.load()
        logger.info(f"=== defib check: {', '.join(targets)} ===")

        for target, monitor in monitors:
            logger.info(f"--- Checking {target} ---")
            try:
                report.issues.extend(monitor.run(state, self.clock()))
            except Exception as e:
                logger.error(f"{target} monitor failed: {e}", exc_info=True)
                report.errors[target] = str(e)

        state.last_check_time = self.clock()
        self.store.save(state)

        report.duration_seconds = self.clock() - start_time
        logger.info(f"Issues found: {len(report.issues)} ({report.critical_count} critical)")
        return report

    def dismiss(self, pid: str) -> WatchdogState:
        """Suppress alerts for a pid until it is recycled"""
        validate_path(self.config.state_file, "state file")
        return self.store.dismiss(pid, now=self.clock())
