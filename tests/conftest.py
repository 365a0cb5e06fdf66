"""
Shared fixtures for building pods in tests.

``make_snapshot`` builds PodSnapshot objects directly; ``make_k8s_pod``
builds kubernetes.client.V1Pod objects as the API would return them.
Container states are given as a mapping of name to one of "running",
"completed", "error", "oomkilled" or "pending".
"""

import pytest
from kubernetes.client import (
    V1ContainerState,
    V1ContainerStateTerminated,
    V1ContainerStateWaiting,
    V1ContainerStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodStatus,
)

from sidecar_common.models import ContainerSnapshot, PodSnapshot

ANNOTATION = "limgit/sidecars"

_TERMINATED_REASONS = {"completed": "Completed", "error": "Error", "oomkilled": "OOMKilled"}


def _container_snapshot(name: str, state: str) -> ContainerSnapshot:
    if state == "running":
        return ContainerSnapshot(name=name, ready=True)
    return ContainerSnapshot(name=name, ready=False, terminated_reason=_TERMINATED_REASONS.get(state))


def _container_status(name: str, state: str) -> V1ContainerStatus:
    if state == "running":
        k8s_state = V1ContainerState()
        ready = True
    elif state in _TERMINATED_REASONS:
        k8s_state = V1ContainerState(
            terminated=V1ContainerStateTerminated(
                exit_code=0 if state == "completed" else 1,
                reason=_TERMINATED_REASONS[state],
            )
        )
        ready = False
    else:
        k8s_state = V1ContainerState(waiting=V1ContainerStateWaiting(reason="ContainerCreating"))
        ready = False

    return V1ContainerStatus(
        name=name,
        ready=ready,
        image="busybox:latest",
        image_id="",
        restart_count=0,
        state=k8s_state,
    )


@pytest.fixture
def make_snapshot():
    """Factory for PodSnapshot objects."""

    def factory(
        containers: dict[str, str],
        sidecars: str | None = None,
        namespace: str = "default",
        name: str = "job-pod",
        phase: str = "Running",
    ) -> PodSnapshot:
        annotations = {ANNOTATION: sidecars} if sidecars is not None else {}
        return PodSnapshot(
            namespace=namespace,
            name=name,
            phase=phase,
            annotations=annotations,
            containers=tuple(_container_snapshot(n, s) for n, s in containers.items()),
        )

    return factory


@pytest.fixture
def make_k8s_pod():
    """Factory for kubernetes.client.V1Pod objects."""

    def factory(
        containers: dict[str, str],
        sidecars: str | None = None,
        namespace: str = "default",
        name: str = "job-pod",
        phase: str = "Running",
        resource_version: str = "1",
    ) -> V1Pod:
        annotations = {ANNOTATION: sidecars} if sidecars is not None else None
        return V1Pod(
            metadata=V1ObjectMeta(
                namespace=namespace,
                name=name,
                annotations=annotations,
                resource_version=resource_version,
            ),
            status=V1PodStatus(
                phase=phase,
                container_statuses=[_container_status(n, s) for n, s in containers.items()],
            ),
        )

    return factory
