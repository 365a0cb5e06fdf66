"""
Sidecar Common module.

This module contains the domain models shared by the controller and the
admin CLI: container states, immutable pod snapshots, container-name sets
and the pod identifier helpers.

The common module has no dependencies on other sidecar_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .models import (
    ContainerNames,
    ContainerSnapshot,
    ContainerState,
    PodSnapshot,
    pod_key,
    split_key,
)

__all__ = [
    "ContainerNames",
    "ContainerSnapshot",
    "ContainerState",
    "PodSnapshot",
    "pod_key",
    "split_key",
]
