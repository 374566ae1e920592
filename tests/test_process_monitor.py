"""Tests for runaway/memory classification and remediation."""

import pytest

from defib.config import ActionConfig, ProcessConfig
from defib.models import ActionMode, IssueType, Severity
from defib.monitors.processes import ProcessMonitor, classify, matches_any
from defib.notify import Notifier
from defib.policy import ActionPolicy

pytestmark = pytest.mark.unit


@pytest.fixture
def config() -> ProcessConfig:
    return ProcessConfig(safe_to_kill_patterns=["stress-ng"], ignore_patterns=["ffmpeg"])


@pytest.fixture
def monitor_factory(config, inspector, notifier, advisor):
    def _build(actions: ActionConfig = None, process_config: ProcessConfig = None) -> ProcessMonitor:
        return ProcessMonitor(
            process_config or config,
            inspector=inspector,
            notifier=notifier,
            policy=ActionPolicy(actions),
            advisor=advisor,
        )
    return _build


class TestMatchesAny:
    def test_substring_match(self) -> None:
        assert matches_any("/usr/bin/stress-ng --cpu 4", ["stress-ng"])

    def test_no_patterns(self) -> None:
        assert not matches_any("/usr/bin/stress-ng", [])

    def test_not_regex(self) -> None:
        assert not matches_any("/usr/bin/python3", ["py.*3"])


class TestClassify:
    def test_runaway_requires_cpu_and_runtime(self, make_proc, config) -> None:
        snapshot = [
            make_proc(pid="1", cpu=95.0, runtime_hours=3.0),
            make_proc(pid="2", cpu=95.0, runtime_hours=1.0),
            make_proc(pid="3", cpu=50.0, runtime_hours=5.0),
        ]
        findings = classify(snapshot, {}, config, ActionPolicy())
        assert [(f.issue_type, f.process.pid) for f in findings] == [(IssueType.RUNAWAY, "1")]

    def test_ignore_patterns_skip_runaway(self, make_proc, config) -> None:
        snapshot = [make_proc(cpu=99.0, runtime_hours=4.0, command="/usr/bin/ffmpeg -i in.mp4")]
        assert classify(snapshot, {}, config, ActionPolicy()) == []

    def test_memory_hog(self, make_proc, config) -> None:
        snapshot = [
            make_proc(pid="10", memory_mb=5000.0, runtime_hours=2.0),
            make_proc(pid="11", memory_mb=5000.0, runtime_hours=0.5),
        ]
        findings = classify(snapshot, {}, config, ActionPolicy())
        assert [(f.issue_type, f.process.pid) for f in findings] == [(IssueType.MEMORY, "10")]

    def test_both_conditions_on_one_process(self, make_proc, config) -> None:
        snapshot = [make_proc(cpu=99.0, memory_mb=8000.0, runtime_hours=3.0)]
        findings = classify(snapshot, {}, config, ActionPolicy())
        assert {f.issue_type for f in findings} == {IssueType.RUNAWAY, IssueType.MEMORY}

    def test_known_issue_is_not_new(self, make_proc, config) -> None:
        snapshot = [make_proc(pid="42", cpu=99.0, runtime_hours=3.0)]
        findings = classify(snapshot, {"runaway:42": 1.0}, config, ActionPolicy())
        assert findings[0].is_new is False

    def test_safe_pattern_selects_kill_runaway(self, make_proc, config) -> None:
        snapshot = [make_proc(cpu=99.0, runtime_hours=3.0, command="stress-ng --cpu 8")]
        finding = classify(snapshot, {}, config, ActionPolicy())[0]
        assert finding.safe is True
        assert finding.mode == ActionMode.AUTO
        assert finding.should_kill is True


class TestDeduplication:
    def test_reported_once(self, monitor_factory, inspector, make_proc, state, now) -> None:
        inspector.snapshot.return_value = [make_proc(pid="42", cpu=99.0, runtime_hours=3.0)]
        monitor = monitor_factory()

        first = monitor.run(state, now)
        second = monitor.run(state, now + 300)

        assert len(first) == 1
        assert first[0].key == "runaway:42"
        assert second == []
        assert state.known_issues["runaway:42"] == now

    def test_pruned_when_pid_disappears(self, monitor_factory, inspector, make_proc, state, now) -> None:
        monitor = monitor_factory()
        inspector.snapshot.return_value = [make_proc(pid="42", cpu=99.0, runtime_hours=3.0)]
        monitor.run(state, now)

        inspector.snapshot.return_value = [make_proc(pid="7")]
        monitor.run(state, now + 300)
        assert "runaway:42" not in state.known_issues

        inspector.snapshot.return_value = [make_proc(pid="42", cpu=99.0, runtime_hours=3.0)]
        assert len(monitor.run(state, now + 600)) == 1

    def test_empty_snapshot_does_not_prune(self, monitor_factory, inspector, state, now) -> None:
        state.known_issues = {"runaway:42": now, "swap_critical": now}
        inspector.snapshot.return_value = []

        assert monitor_factory().run(state, now) == []
        assert state.known_issues == {"runaway:42": now, "swap_critical": now}

    def test_non_pid_keys_survive_pruning(self, monitor_factory, inspector, make_proc, state, now) -> None:
        state.known_issues = {"swap_critical": now}
        inspector.snapshot.return_value = [make_proc(pid="7")]

        monitor_factory().run(state, now)
        assert "swap_critical" in state.known_issues


class TestActionPolicy:
    def test_auto_kills_safe_process(self, monitor_factory, inspector, notifier, make_proc, state, now) -> None:
        inspector.snapshot.return_value = [make_proc(pid="42", cpu=99.0, runtime_hours=3.0, command="stress-ng --cpu 8")]

        issues = monitor_factory().run(state, now)

        inspector.kill.assert_called_once_with("42")
        assert issues[0].auto_killed is True
        assert issues[0].severity == Severity.WARNING
        assert notifier.send.call_args.args[0] == "Runaway Process Killed"

    def test_failed_kill_is_critical(self, monitor_factory, inspector, make_proc, state, now) -> None:
        inspector.kill.return_value = False
        inspector.snapshot.return_value = [make_proc(cpu=99.0, runtime_hours=3.0, command="stress-ng")]

        issues = monitor_factory().run(state, now)
        assert issues[0].auto_killed is False
        assert issues[0].severity == Severity.CRITICAL

    def test_ask_shows_guidance(self, monitor_factory, inspector, notifier, advisor, make_proc, state, now) -> None:
        inspector.snapshot.return_value = [make_proc(pid="42", cpu=99.0, runtime_hours=3.0)]

        issues = monitor_factory().run(state, now)

        inspector.kill.assert_not_called()
        advisor.advise.assert_called_once()
        assert advisor.advise.call_args.args[0] == IssueType.RUNAWAY
        assert advisor.advise.call_args.args[1]["pid"] == "42"
        notifier.send.assert_not_called()
        assert issues[0].severity == Severity.CRITICAL

    def test_deny_sends_critical_notification(self, monitor_factory, inspector, notifier, advisor, make_proc, state, now) -> None:
        inspector.snapshot.return_value = [make_proc(cpu=99.0, runtime_hours=3.0)]

        monitor_factory(ActionConfig(kill_unknown=ActionMode.DENY)).run(state, now)

        inspector.kill.assert_not_called()
        advisor.advise.assert_not_called()
        assert notifier.send.call_args.args[0] == "Runaway Process Detected"
        assert notifier.send.call_args.kwargs["is_error"] is True

    def test_safe_pattern_with_kill_runaway_denied(self, monitor_factory, inspector, make_proc, state, now) -> None:
        inspector.snapshot.return_value = [make_proc(cpu=99.0, runtime_hours=3.0, command="stress-ng")]

        monitor_factory(ActionConfig(kill_runaway=ActionMode.DENY)).run(state, now)
        inspector.kill.assert_not_called()

    def test_memory_hog_never_killed(self, monitor_factory, inspector, notifier, make_proc, state, now) -> None:
        inspector.snapshot.return_value = [make_proc(pid="9", memory_mb=6000.0, runtime_hours=2.0)]

        issues = monitor_factory(ActionConfig(kill_unknown=ActionMode.AUTO)).run(state, now)

        inspector.kill.assert_not_called()
        assert issues[0].type == IssueType.MEMORY
        assert issues[0].message == "PID 9: 6000MB memory"
        assert notifier.send.call_args.args[0] == "High Memory Process"

    def test_known_runaway_still_killed_but_not_reported(self, monitor_factory, inspector, notifier, make_proc, state, now) -> None:
        state.known_issues = {"runaway:42": now - 60}
        inspector.snapshot.return_value = [make_proc(pid="42", cpu=99.0, runtime_hours=3.0, command="stress-ng")]

        assert monitor_factory().run(state, now) == []
        inspector.kill.assert_called_once_with("42")
        notifier.send.assert_not_called()


class TestNotificationFailure:
    def test_bad_webhook_does_not_lose_issues(self, config, inspector, make_proc, state, now) -> None:
        inspector.snapshot.return_value = [
            make_proc(pid="42", cpu=99.0, runtime_hours=3.0),
            make_proc(pid="43", memory_mb=6000.0, runtime_hours=2.0),
        ]
        monitor = ProcessMonitor(
            config,
            inspector=inspector,
            notifier=Notifier("http://[::1"),
            policy=ActionPolicy(ActionConfig(kill_unknown=ActionMode.DENY)),
        )

        issues = monitor.run(state, now)

        assert {issue.key for issue in issues} == {"runaway:42", "memory:43"}
