"""
Container collaborators - HTTP health probe and compose restarts
"""

import logging
import subprocess  # nosec B404 - compose restarts need subprocess
import time
from typing import Callable, List, Optional

import httpx

from defib.models import HealthResult

logger = logging.getLogger(__name__)

# Fixed settle delay before the single post-restart probe
RESTART_SETTLE_SECONDS = 5.0


def compose_command(runtime: str) -> str:
    return "docker-compose" if runtime == "docker" else "podman-compose"


class HealthProbe:
    """HTTP health check with a hard timeout and a max acceptable response time"""

    def __init__(self, url: str, timeout_seconds: float = 10.0, max_response_seconds: float = 15.0):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.max_response_seconds = max_response_seconds

    def check(self) -> HealthResult:
        start_time = time.monotonic()
        try:
            response = httpx.get(self.url, timeout=self.timeout_seconds)
        except httpx.TimeoutException:
            return HealthResult(
                healthy=False,
                response_time=time.monotonic() - start_time,
                error=f"Timeout after {self.timeout_seconds:g}s",
            )
        except httpx.ConnectError as e:
            return HealthResult(
                healthy=False,
                response_time=time.monotonic() - start_time,
                error=f"Connection failed: {e}",
            )
        except Exception as e:
            return HealthResult(healthy=False, response_time=time.monotonic() - start_time, error=str(e))

        response_time = time.monotonic() - start_time

        if not response.is_success:
            return HealthResult(healthy=False, response_time=response_time, error=f"HTTP {response.status_code}")

        if response_time > self.max_response_seconds:
            return HealthResult(
                healthy=False,
                response_time=response_time,
                error=f"Slow response: {response_time:.1f}s",
            )

        return HealthResult(healthy=True, response_time=response_time)


class ComposeRestarter:
    """
    Restart a compose stack or a single service

    Commands run without a timeout: a hung compose call blocks the
    invocation.
    """

    def __init__(
        self,
        compose_dir: str,
        runtime: str,
        probe: Optional[HealthProbe] = None,
        settle_seconds: float = RESTART_SETTLE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.compose_dir = compose_dir
        self.runtime = runtime
        self.probe = probe
        self.settle_seconds = settle_seconds
        self.sleep = sleep

    @property
    def compose(self) -> str:
        return compose_command(self.runtime)

    def _run(self, args: List[str]) -> None:
        cmd = [self.compose] + args
        logger.info(f"Running: {' '.join(cmd)} (in {self.compose_dir})")
        subprocess.run(cmd, cwd=self.compose_dir, check=True, capture_output=True, text=True)  # nosec B603

    def restart(self, service_name: Optional[str] = None) -> bool:
        """
        Stop then start, then probe health exactly once.

        Returns True only if the post-restart probe is healthy. Command
        failures are reported as a failed restart.
        """
        service_args = [service_name] if service_name else []
        logger.info(f"Restarting {service_name or 'stack'} with {self.compose}...")

        try:
            self._run(["down"] + service_args)
            self._run(["up", "-d"] + service_args)
        except (subprocess.CalledProcessError, OSError) as e:
            stderr = getattr(e, "stderr", None)
            logger.error(f"Failed to restart container: {stderr or e}")
            return False

        if self.probe is None:
            return True

        self.sleep(self.settle_seconds)
        health = self.probe.check()
        if not health.healthy:
            logger.warning(f"Post-restart health check failed: {health.error}")
        return health.healthy

    def restart_in_place(self, service_name: Optional[str] = None) -> bool:
        """Service-scoped `restart`, or whole-stack down + up. No health probe."""
        try:
            if service_name:
                self._run(["restart", service_name])
            else:
                self._run(["down"])
                self._run(["up", "-d"])
            return True
        except (subprocess.CalledProcessError, OSError) as e:
            stderr = getattr(e, "stderr", None)
            logger.error(f"Failed to restart compose: {stderr or e}")
            return False
