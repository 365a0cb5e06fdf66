"""
Shutdown decision for annotated pods.

A pod opts in by listing its sidecar containers in an annotation. Once every
container has settled (running or terminated) and the only containers still
running are exactly those sidecars, the sidecars are due for termination.

Everything here is pure: the same snapshot always yields the same decision.
"""

from dataclasses import dataclass, replace
from typing import Any

from sidecar_common.models import ContainerNames, ContainerState, PodSnapshot

DEFAULT_ANNOTATION_KEY = "limgit/sidecars"

EMPTY: ContainerNames = frozenset()


@dataclass(frozen=True)
class ShutdownDecision:
    """Container partition of one pod and the sidecars to terminate now."""

    annotated: bool
    all: ContainerNames = EMPTY
    running: ContainerNames = EMPTY
    completed: ContainerNames = EMPTY
    sidecars: ContainerNames = EMPTY
    targets: ContainerNames = EMPTY

    @property
    def settled(self) -> bool:
        """True when every container is either running or terminated."""
        return (self.running | self.completed) == self.all

    def log_fields(self) -> dict[str, Any]:
        return {
            "c_total": len(self.all),
            "c_running": len(self.running),
            "c_completed": len(self.completed),
            "c_sidecars": len(self.sidecars),
        }


def parse_sidecars(value: str | None) -> ContainerNames:
    """
    Parse a comma-separated list of container names.

    Surrounding whitespace is trimmed and empty entries are dropped, so
    "proxy, log-shipper," names two containers.
    """
    if not value:
        return EMPTY
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def decide(
    snapshot: PodSnapshot, annotation_key: str = DEFAULT_ANNOTATION_KEY
) -> ShutdownDecision:
    """
    Classify a pod's containers and decide which sidecars to terminate.

    Args:
        snapshot: Pod as observed by the cache
        annotation_key: Annotation listing the pod's sidecar containers

    Returns:
        ShutdownDecision whose targets are empty unless the pod is due
    """
    sidecars = parse_sidecars(snapshot.annotations.get(annotation_key))
    if not sidecars:
        return ShutdownDecision(annotated=False)

    all_names = snapshot.container_names()
    running = snapshot.names_in(ContainerState.RUNNING)
    completed = snapshot.names_in(
        ContainerState.TERMINATED_SUCCESS, ContainerState.TERMINATED_FAILURE
    )

    decision = ShutdownDecision(
        annotated=True,
        all=all_names,
        running=running,
        completed=completed,
        sidecars=sidecars,
    )

    # Annotation names missing from the pod simply never match `running`
    if decision.settled and running == sidecars:
        return replace(decision, targets=sidecars)
    return decision


def evaluate(
    snapshot: PodSnapshot, annotation_key: str = DEFAULT_ANNOTATION_KEY
) -> ContainerNames:
    """Return the sidecars of ``snapshot`` that must be terminated now."""
    return decide(snapshot, annotation_key).targets
