"""
Sidecar Controller module.

This module contains the controller that watches pods and stops their
sidecar containers once the primary containers have finished, together with
its work queue, pod cache, shutdown evaluator and exec client.

The controller runs as its own process (``sidecar-controller``).
"""

from .cache import PodCache
from .controller import SidecarController
from .evaluator import ShutdownDecision, decide, evaluate
from .executor import TERMINATE_COMMAND, PodExecutor
from .workqueue import RateLimitingQueue

__all__ = [
    "PodCache",
    "PodExecutor",
    "RateLimitingQueue",
    "ShutdownDecision",
    "SidecarController",
    "TERMINATE_COMMAND",
    "decide",
    "evaluate",
]
