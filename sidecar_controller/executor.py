"""
Remote command execution inside pod containers.

This module wraps the Kubernetes exec subresource. Commands run through
/bin/sh in the target container over the websocket stream of the official
client; only stderr is captured.
"""

import asyncio
import logging
import threading

from kubernetes.client import CoreV1Api
from kubernetes.stream import stream

from sidecar_common.models import PodSnapshot

from .errors import ExecError

logger = logging.getLogger(__name__)

# Graceful stop: PID 1 gets SIGTERM and runs its own shutdown handling
TERMINATE_COMMAND = "kill -s TERM 1"


class PodExecutor:
    """
    Executes shell commands in running containers.

    The CoreV1Api handed in must sit on an ApiClient used for nothing but
    streaming: kubernetes.stream.stream() patches the client's request
    method for the duration of the call. Opening a stream is serialized
    so concurrent workers never see each other's swapped client; the
    open streams then run in parallel.
    """

    def __init__(self, core_api: CoreV1Api, timeout: float = 10.0):
        """
        Initialize the executor.

        Args:
            core_api: CoreV1 API bound to a streaming-only ApiClient
            timeout: Seconds to wait for the command's stream to close
        """
        self.core_api = core_api
        self.timeout = timeout
        self._connect_lock = threading.Lock()

    async def exec(self, pod: PodSnapshot, container: str, command: str) -> bytes:
        """
        Run ``command`` in ``container`` of ``pod``.

        Args:
            pod: Target pod
            container: Container name within the pod
            command: Shell command line, run as /bin/sh -c <command>

        Returns:
            Captured stderr (may be empty)

        Raises:
            ExecError: If the stream cannot be opened, fails or times out
        """
        return await asyncio.to_thread(self._exec_blocking, pod, container, command)

    def _exec_blocking(self, pod: PodSnapshot, container: str, command: str) -> bytes:
        logger.debug(f"Executing {command!r} in {pod.key}/{container}")
        try:
            with self._connect_lock:
                resp = stream(
                    self.core_api.connect_get_namespaced_pod_exec,
                    pod.name,
                    pod.namespace,
                    container=container,
                    command=["/bin/sh", "-c", command],
                    stderr=True,
                    stdin=False,
                    stdout=False,
                    tty=False,
                    _preload_content=False,
                )
        except Exception as e:
            raise ExecError(pod.key, container, str(e)) from e

        try:
            resp.run_forever(timeout=self.timeout)
            if resp.is_open():
                raise ExecError(
                    pod.key, container, f"command did not finish within {self.timeout}s"
                )
            stderr = resp.read_stderr()
        except ExecError:
            raise
        except Exception as e:
            raise ExecError(pod.key, container, str(e)) from e
        finally:
            resp.close()

        return stderr.encode() if isinstance(stderr, str) else stderr
