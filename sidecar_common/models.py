"""
Data models for pod and container state.

These models represent the domain objects used throughout the application,
independent of the Kubernetes client objects they are built from.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeAlias

# Immutable, order-irrelevant set of container names. Union and equality are
# the only operations the shutdown decision needs.
ContainerNames: TypeAlias = frozenset[str]

TERMINAL_REASON_SUCCESS = "Completed"
TERMINAL_REASON_FAILURE = "Error"


class ContainerState(str, Enum):
    """
    Settled state of a single container.

    Derived from the container's readiness and, when it is not ready, from
    the reason of its terminated state.
    """

    PENDING = "Pending"
    RUNNING = "Running"
    TERMINATED_SUCCESS = "TerminatedSuccess"
    TERMINATED_FAILURE = "TerminatedFailure"

    @classmethod
    def derive(cls, ready: bool, terminated_reason: str | None) -> "ContainerState":
        """
        Classify a container.

        Args:
            ready: Whether the container reports ready
            terminated_reason: Reason of the terminated state, if any

        Returns:
            RUNNING for ready containers, a terminal state for the
            "Completed" and "Error" reasons, PENDING otherwise
        """
        if ready:
            return cls.RUNNING
        if terminated_reason == TERMINAL_REASON_SUCCESS:
            return cls.TERMINATED_SUCCESS
        if terminated_reason == TERMINAL_REASON_FAILURE:
            return cls.TERMINATED_FAILURE
        return cls.PENDING


@dataclass(frozen=True)
class ContainerSnapshot:
    """Status of one container at the time its pod was observed."""

    name: str
    ready: bool = False
    terminated_reason: str | None = None

    @property
    def state(self) -> ContainerState:
        return ContainerState.derive(self.ready, self.terminated_reason)

    def to_dict(self) -> dict[str, Any]:
        """Convert container to dictionary format (for CLI output)."""
        return {
            "name": self.name,
            "ready": self.ready,
            "terminated_reason": self.terminated_reason,
            "state": self.state.value,
        }


@dataclass(frozen=True)
class PodSnapshot:
    """
    Immutable view of a pod at a point in time.

    Snapshots are owned by the pod cache; the reconciler only reads them.
    """

    namespace: str
    name: str
    phase: str | None = None
    annotations: Mapping[str, str] = field(default_factory=dict)
    containers: tuple[ContainerSnapshot, ...] = ()

    def __post_init__(self) -> None:
        # Freeze the caller's mapping so the snapshot cannot change under a reader
        object.__setattr__(self, "annotations", MappingProxyType(dict(self.annotations)))
        object.__setattr__(self, "containers", tuple(self.containers))

    @property
    def key(self) -> str:
        return pod_key(self.namespace, self.name)

    def container_names(self) -> ContainerNames:
        """Names of every container reporting a status."""
        return frozenset(c.name for c in self.containers)

    def names_in(self, *states: ContainerState) -> ContainerNames:
        """Names of the containers whose state is one of ``states``."""
        return frozenset(c.name for c in self.containers if c.state in states)

    def to_dict(self) -> dict[str, Any]:
        """Convert pod to dictionary format (for CLI output)."""
        return {
            "key": self.key,
            "phase": self.phase,
            "annotations": dict(self.annotations),
            "containers": [c.to_dict() for c in self.containers],
        }

    @classmethod
    def from_k8s(cls, pod: Any) -> "PodSnapshot":
        """
        Build a snapshot from a ``kubernetes.client.V1Pod``.

        Args:
            pod: Pod object as returned by the CoreV1 API or a watch event

        Returns:
            PodSnapshot with one ContainerSnapshot per container status
        """
        metadata = pod.metadata
        status = pod.status
        containers: list[ContainerSnapshot] = []

        for container_status in (status.container_statuses if status else None) or []:
            terminated = None
            if container_status.state is not None:
                terminated = container_status.state.terminated
            containers.append(
                ContainerSnapshot(
                    name=container_status.name,
                    ready=bool(container_status.ready),
                    terminated_reason=terminated.reason if terminated else None,
                )
            )

        return cls(
            namespace=metadata.namespace or "",
            name=metadata.name,
            phase=status.phase if status else None,
            annotations=metadata.annotations or {},
            containers=tuple(containers),
        )


def pod_key(namespace: str | None, name: str) -> str:
    """
    Build the identifier of a pod.

    Returns:
        "namespace/name", or just "name" for cluster-scoped objects
    """
    if namespace:
        return f"{namespace}/{name}"
    return name


def split_key(key: str) -> tuple[str, str]:
    """
    Split an identifier into namespace and name.

    Raises:
        ValueError: If the key contains more than one "/"
    """
    parts = key.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")

