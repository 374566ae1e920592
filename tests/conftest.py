"""Shared fixtures: fake processes and mocked collaborators."""

from unittest.mock import MagicMock

import pytest

from defib.host import ProcessInspector
from defib.models import ProcessInfo, WatchdogState
from defib.notify import Notifier
from defib.guidance import Advisor

NOW = 1_700_000_000.0


def _make_proc(pid="1234", cpu=0.5, memory_mb=50.0, runtime_hours=0.5,
              command="/usr/bin/worker", state="S", elapsed="30:00") -> ProcessInfo:
    return ProcessInfo(
        pid=pid,
        cpu=cpu,
        memory_mb=memory_mb,
        runtime_hours=runtime_hours,
        command=command,
        state=state,
        elapsed=elapsed,
    )


@pytest.fixture
def now() -> float:
    return NOW


@pytest.fixture
def state() -> WatchdogState:
    return WatchdogState(last_check_time=NOW)


@pytest.fixture
def inspector() -> MagicMock:
    mock = MagicMock(spec=ProcessInspector)
    mock.snapshot.return_value = []
    mock.kill.return_value = True
    mock.swap_usage.return_value = (1000, 100)
    return mock


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=Notifier)


@pytest.fixture
def advisor() -> MagicMock:
    return MagicMock(spec=Advisor)


@pytest.fixture
def make_proc():
    return _make_proc
