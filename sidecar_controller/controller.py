"""
Sidecar controller with an event-driven reconcile loop.

This module implements a Kubernetes-style controller: the pod cache turns
cluster changes into pod keys, the work queue deduplicates and rate-limits
them, and reconcile workers evaluate each pod and send a graceful stop signal
to its sidecars once its primary containers have finished.
"""

import asyncio
import logging

from sidecar_common.models import PodSnapshot

from .cache import PodCache
from .errors import CacheLookupError, CacheSyncError, ExecError, handle_error
from .evaluator import DEFAULT_ANNOTATION_KEY, ShutdownDecision, decide
from .executor import TERMINATE_COMMAND, PodExecutor
from .workqueue import RateLimitingQueue

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class SidecarController:
    """
    Controller that stops sidecar containers of finished pods.

    Each worker repeatedly:
    1. Takes a pod key from the work queue
    2. Loads the pod's latest snapshot from the cache
    3. Decides which sidecars, if any, are due for termination
    4. Sends TERM to PID 1 of each of them
    5. Releases the key and either forgets it or requeues it with backoff
    """

    def __init__(
        self,
        cache: PodCache,
        queue: RateLimitingQueue,
        executor: PodExecutor,
        annotation_key: str = DEFAULT_ANNOTATION_KEY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        workers: int = 1,
        sync_timeout: float = 60.0,
    ):
        """
        Initialize the sidecar controller.

        Args:
            cache: Pod cache to read snapshots from and subscribe to
            queue: Work queue shared by the cache handlers and the workers
            executor: Runs the termination command inside containers
            annotation_key: Annotation listing a pod's sidecar containers
            max_retries: Requeues allowed for a failing key before giving up
            workers: Number of concurrent reconcile workers
            sync_timeout: Seconds to wait for the cache's initial list
        """
        self.cache = cache
        self.queue = queue
        self.executor = executor
        self.annotation_key = annotation_key
        self.max_retries = max_retries
        self.workers = max(1, workers)
        self.sync_timeout = sync_timeout

        self._running = False
        self._tasks: list[asyncio.Task] = []

        self.cache.add_event_handler(self)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def ready(self) -> bool:
        return self._running and self.cache.has_synced

    @property
    def queue_depth(self) -> int:
        return len(self.queue)

    # Cache notifications

    def on_add(self, new: PodSnapshot) -> None:
        # Covers the initial list, so pods that finished while the
        # controller was down are reconciled without waiting for an update
        self.queue.add(new.key)

    def on_update(self, old: PodSnapshot, new: PodSnapshot) -> None:
        self.queue.add(new.key)

    def on_delete(self, old: PodSnapshot) -> None:
        pass

    # Lifecycle

    async def start(self) -> None:
        """
        Start the cache and, once it has synced, the reconcile workers.

        A cache that does not sync in time is reported through
        handle_error() and leaves the controller stopped.
        """
        if self._running:
            logger.warning("Controller already running")
            return

        logger.info("Starting the sidecar controller")
        self.cache.start()

        try:
            await self.cache.wait_for_sync(self.sync_timeout)
        except CacheSyncError as e:
            handle_error(e)
            self.cache.stop()
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self.run_worker(), name=f"sidecar-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Sidecar controller is ready ({self.workers} worker(s))")

    async def stop(self) -> None:
        """Stop accepting work, let in-flight items finish, then stop the cache."""
        logger.info("Stopping sidecar controller...")
        self.queue.shut_down()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []

        self.cache.stop()
        self._running = False
        logger.info("Sidecar controller stopped")

    # Worker loop

    async def run_worker(self) -> None:
        while await self.process_next_item():
            pass

    async def process_next_item(self) -> bool:
        """
        Process one key from the queue.

        Returns:
            False once the queue has been shut down, True otherwise
        """
        key, shutdown = await self.queue.get()
        if shutdown:
            return False

        error: Exception | None = None
        try:
            await self.reconcile(key)
        except Exception as e:
            error = e
        finally:
            self.queue.done(key)

        if error is None:
            self.queue.forget(key)
        elif self.queue.num_requeues(key) < self.max_retries:
            logger.error(f"Error processing {key} (will retry): {error}", extra={"key": key})
            self.queue.add_rate_limited(key)
        else:
            logger.error(f"Error processing {key} (giving up): {error}", extra={"key": key})
            self.queue.forget(key)
            handle_error(error)

        return True

    async def reconcile(self, key: str) -> ShutdownDecision | None:
        """
        Reconcile a single pod.

        Args:
            key: Pod identifier ("namespace/name")

        Returns:
            The shutdown decision, or None if the pod no longer exists

        Raises:
            CacheLookupError: If the pod could not be read from the cache
        """
        try:
            pod = self.cache.get_by_key(key)
        except Exception as e:
            logger.error(f"Error fetching object from store: {e}", extra={"key": key})
            raise CacheLookupError(f"Error fetching object with key {key} from store: {e}") from e

        if pod is None:
            logger.debug("Does not exist. Pass", extra={"key": key})
            return None

        decision = decide(pod, self.annotation_key)
        if not decision.annotated:
            logger.debug(
                f"No `{self.annotation_key}` annotation. Pass",
                extra={"key": key, "phase": pod.phase},
            )
            return decision

        fields = {"key": key, "phase": pod.phase, **decision.log_fields()}
        logger.debug(f"`{self.annotation_key}` annotation found", extra=fields)

        if not decision.targets:
            return decision

        logger.info("Only sidecar containers are remaining. Shutting them down", extra=fields)
        for container in sorted(decision.targets):
            await self._terminate(pod, container, fields)

        return decision

    async def _terminate(self, pod: PodSnapshot, container: str, fields: dict) -> None:
        """
        Send the termination command to one sidecar.

        Failures are logged and do not affect the other sidecars: the
        decision stays valid, and the next notification for the pod will
        evaluate it again.
        """
        context = {**fields, "container": container}
        try:
            stderr = await self.executor.exec(pod, container, TERMINATE_COMMAND)
        except ExecError as e:
            logger.error(f"Error invoking kill command: {e.reason}", extra=context)
            return

        if stderr:
            logger.warning(
                f"stderr invoking kill command: {stderr.decode(errors='replace').strip()}",
                extra=context,
            )
