"""Tests for C01 pod health classification."""

from __future__ import annotations

from typing import Any

from fakes import make_container_status, make_pod

from kubedoctor.models.config import ThresholdConfig
from kubedoctor.models.resources import Classification, HealthVerdict, Severity
from kubedoctor.rules.base import ClassifierContext
from kubedoctor.rules.r01_pod_health import PodHealthClassifier


def _classify(pod: dict[str, Any], restart_threshold: int = 5) -> Classification:
    context = ClassifierContext(thresholds=ThresholdConfig(restart_threshold=restart_threshold))
    return PodHealthClassifier().classify("Pod", pod, context)


class TestPodHealthVerdict:
    def test_healthy_pod_has_no_findings(self) -> None:
        result = _classify(make_pod())
        assert result.verdict is HealthVerdict.HEALTHY
        assert result.findings == ()
        assert result.phase == "Running"
        assert str(result.subject) == "Pod/default/web-0"

    def test_verdict_follows_pod_health_law(self) -> None:
        pods = [
            make_pod(),
            make_pod(phase="Succeeded", statuses=[]),
            make_pod(statuses=[make_container_status(ready=False)]),
            make_pod(phase="Pending", statuses=[]),
            make_pod(phase="Failed", statuses=[]),
        ]
        verdicts = [_classify(p).verdict for p in pods]
        assert verdicts == [
            HealthVerdict.HEALTHY,
            HealthVerdict.HEALTHY,
            HealthVerdict.UNHEALTHY,
            HealthVerdict.UNHEALTHY,
            HealthVerdict.UNHEALTHY,
        ]


class TestCrashLoop:
    def test_crash_loop_with_oom_killed_last_state(self) -> None:
        pod = make_pod(
            memory_limit="128Mi",
            statuses=[
                make_container_status(
                    ready=False,
                    restarts=12,
                    waiting="CrashLoopBackOff",
                    last_reason="OOMKilled",
                    last_exit=137,
                )
            ],
        )
        result = _classify(pod)

        assert result.verdict is HealthVerdict.UNHEALTHY
        assert result.phase == "CrashLoopBackOff"
        crash = result.findings[0]
        assert crash.severity is Severity.CRITICAL
        assert crash.message == "Container 'app' is in CrashLoopBackOff"
        assert "Last termination reason: OOMKilled" in crash.details
        assert "Exit code: 137" in crash.details
        assert crash.suggested_action == "Increase memory limit for container 'app' (currently 128Mi, OOMKilled)"

        restarts = [f for f in result.findings if f.category == "restarts"]
        assert len(restarts) == 1
        assert restarts[0].severity is Severity.WARNING
        assert restarts[0].message == "Container 'app' has high restart count: 12"

    def test_crash_loop_without_last_state_suggests_logs(self) -> None:
        pod = make_pod(statuses=[make_container_status(ready=False, waiting="CrashLoopBackOff")])
        crash = _classify(pod).findings[0]
        assert crash.details == ()
        assert crash.suggested_action == "Check application logs for container 'app'"

    def test_oom_without_memory_limit_says_unknown(self) -> None:
        pod = make_pod(
            memory_limit=None,
            statuses=[make_container_status(ready=False, waiting="CrashLoopBackOff", last_reason="OOMKilled")],
        )
        crash = _classify(pod).findings[0]
        assert crash.suggested_action == "Increase memory limit for container 'app' (currently unknown, OOMKilled)"


class TestOtherContainerStates:
    def test_image_pull_is_critical(self) -> None:
        pod = make_pod(
            statuses=[make_container_status(ready=False, waiting="ImagePullBackOff", waiting_message="not found")]
        )
        finding = _classify(pod).findings[0]
        assert finding.severity is Severity.CRITICAL
        assert finding.message == "Container 'app' cannot pull image: not found"

    def test_other_waiting_reason_is_warning(self) -> None:
        pod = make_pod(statuses=[make_container_status(ready=False, waiting="ContainerCreating")])
        finding = _classify(pod).findings[0]
        assert finding.severity is Severity.WARNING
        assert finding.message == "Container 'app' is waiting: ContainerCreating"

    def test_non_zero_exit_is_warning(self) -> None:
        pod = make_pod(
            phase="Failed",
            statuses=[make_container_status(ready=False, terminated_exit=1, terminated_reason="Error")],
        )
        finding = _classify(pod).findings[0]
        assert finding.severity is Severity.WARNING
        assert "exit code 1" in finding.message

    def test_zero_exit_is_not_reported(self) -> None:
        pod = make_pod(
            phase="Succeeded",
            statuses=[make_container_status(ready=False, terminated_exit=0, terminated_reason="Completed")],
        )
        assert _classify(pod).findings == ()

    def test_restarts_at_threshold_are_not_reported(self) -> None:
        pod = make_pod(statuses=[make_container_status(restarts=5)])
        assert _classify(pod, restart_threshold=5).findings == ()

    def test_restart_threshold_comes_from_context(self) -> None:
        pod = make_pod(statuses=[make_container_status(restarts=2)])
        assert _classify(pod, restart_threshold=1).findings[0].category == "restarts"


class TestSchedulingAndResources:
    def test_unschedulable_pending_pod(self) -> None:
        pod = make_pod(
            phase="Pending",
            statuses=[],
            conditions=[{"type": "PodScheduled", "status": "False", "message": "0/3 nodes are available"}],
        )
        finding = _classify(pod).findings[0]
        assert finding.severity is Severity.CRITICAL
        assert finding.message == "Pod not scheduled: 0/3 nodes are available"
        assert finding.suggested_action is not None

    def test_missing_memory_limit_is_info(self) -> None:
        result = _classify(make_pod(memory_limit=None))
        assert [f.severity for f in result.findings] == [Severity.INFO]
        assert result.findings[0].message == "Container 'app' has no memory limit set"
        assert result.verdict is HealthVerdict.HEALTHY
