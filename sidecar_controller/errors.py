"""
Exceptions raised by the sidecar controller and the process-wide error sink.

Per-item errors are logged and retried by the reconciler; only
StartupError is fatal to the process.
"""

import logging

logger = logging.getLogger(__name__)


class SidecarControllerError(Exception):
    """Base class for all controller errors."""


class CacheLookupError(SidecarControllerError):
    """Raised when a pod cannot be read from the cache (transient)."""


class CacheSyncError(SidecarControllerError):
    """Raised when the pod cache does not finish its initial list in time."""


class ExecError(SidecarControllerError):
    """Raised when a command cannot be executed inside a container."""

    def __init__(self, key: str, container: str, reason: str):
        super().__init__(f"exec in {key}/{container} failed: {reason}")
        self.key = key
        self.container = container
        self.reason = reason


class StartupError(SidecarControllerError):
    """Raised when the controller cannot build a working cluster client."""


def handle_error(err: BaseException) -> None:
    """
    Report an error that nothing upstream will retry.

    This is the last stop for errors abandoned by the reconciler. It logs
    with traceback and never raises, so a broken pod cannot take the
    process down.
    """
    logger.error(
        f"Unhandled error: {err}",
        exc_info=(type(err), err, err.__traceback__),
    )
