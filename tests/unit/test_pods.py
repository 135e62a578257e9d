"""Tests for kubedoctor.k8s.pods read helpers."""

from __future__ import annotations

from fakes import make_container_status, make_pod

from kubedoctor.k8s.pods import (
    container_limit,
    container_request,
    container_summary,
    find_container,
    is_pod_healthy,
    pod_phase,
    pod_phase_reason,
)


class TestIsPodHealthy:
    def test_running_and_ready(self) -> None:
        assert is_pod_healthy(make_pod())

    def test_succeeded_is_healthy_regardless_of_containers(self) -> None:
        pod = make_pod(phase="Succeeded", statuses=[make_container_status(ready=False)])
        assert is_pod_healthy(pod)

    def test_running_with_unready_container(self) -> None:
        assert not is_pod_healthy(make_pod(statuses=[make_container_status(ready=False)]))

    def test_running_with_waiting_container(self) -> None:
        pod = make_pod(statuses=[make_container_status(ready=True, waiting="CrashLoopBackOff")])
        assert not is_pod_healthy(pod)

    def test_pending_is_unhealthy(self) -> None:
        assert not is_pod_healthy(make_pod(phase="Pending", statuses=[]))

    def test_missing_status_is_unhealthy(self) -> None:
        assert not is_pod_healthy({"metadata": {"name": "x"}})


class TestPhaseReason:
    def test_plain_phase(self) -> None:
        assert pod_phase_reason(make_pod()) == "Running"

    def test_waiting_reason_wins(self) -> None:
        pod = make_pod(statuses=[make_container_status(ready=False, waiting="ImagePullBackOff")])
        assert pod_phase_reason(pod) == "ImagePullBackOff"

    def test_init_container_reason_prefixed(self) -> None:
        pod = make_pod(phase="Pending")
        pod["status"]["initContainerStatuses"] = [make_container_status("init", waiting="CrashLoopBackOff")]
        assert pod_phase_reason(pod) == "Init:CrashLoopBackOff"

    def test_missing_phase_is_unknown(self) -> None:
        assert pod_phase({}) == "Unknown"


class TestContainers:
    def test_summary_counts_ready_and_restarts(self) -> None:
        pod = make_pod(
            containers=[{"name": "a"}, {"name": "b"}],
            statuses=[make_container_status("a", restarts=2), make_container_status("b", ready=False, restarts=3)],
        )
        summary = container_summary(pod)
        assert (summary.ready, summary.total, summary.restarts) == (1, 2, 5)

    def test_find_container_and_resources(self) -> None:
        pod = make_pod(memory_limit="128Mi")
        container = find_container(pod, "app")
        assert container is not None
        assert container_limit(container, "memory") == "128Mi"
        assert container_request(container, "cpu") == "100m"
        assert container_limit(container, "cpu") == ""

    def test_find_unknown_container(self) -> None:
        assert find_container(make_pod(), "sidecar") is None
        assert container_limit(None, "memory") == ""
