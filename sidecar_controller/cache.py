"""
Local pod cache fed by the Kubernetes list/watch API.

The cache keeps the latest snapshot of every pod keyed by "namespace/name"
and tells a registered handler about adds, updates and deletes. The watch
runs in a background thread; handler callbacks are handed over to the
asyncio event loop with call_soon_threadsafe, so handlers never run
concurrently with the reconcile workers.
"""

import asyncio
import logging
import random
import threading
import time
from typing import Protocol

from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

from sidecar_common.models import PodSnapshot

from .errors import CacheSyncError

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30


class PodEventHandler(Protocol):
    """Receives cache notifications on the event loop thread."""

    def on_add(self, new: PodSnapshot) -> None: ...

    def on_update(self, old: PodSnapshot, new: PodSnapshot) -> None: ...

    def on_delete(self, old: PodSnapshot) -> None: ...


class PodCache:
    """
    Eventually consistent mirror of the cluster's pods.

    Lifecycle:
    1. start() lists pods, seeds the store and marks the cache synced
    2. A watch streams changes from the list's resourceVersion
    3. "410 Gone" re-lists and resumes; other errors back off with jitter
    4. 401/403 stop the watch; the controller cannot fix RBAC by retrying
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str | None = None,
        watch_timeout: int = 300,
    ):
        """
        Initialize the cache.

        Args:
            core_api: CoreV1 API used for list and watch calls
            namespace: Namespace to mirror, or None for all namespaces
            watch_timeout: Server-side timeout of each watch request in seconds
        """
        self.core_api = core_api
        self.namespace = namespace
        self.watch_timeout = watch_timeout

        self._store: dict[str, PodSnapshot] = {}
        self._lock = threading.Lock()
        self._synced = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._handler: PodEventHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._active_watcher: watch.Watch | None = None

    @property
    def has_synced(self) -> bool:
        return self._synced.is_set()

    def add_event_handler(self, handler: PodEventHandler) -> None:
        self._handler = handler

    def get_by_key(self, key: str) -> PodSnapshot | None:
        """
        Get the latest snapshot of a pod.

        Returns:
            The snapshot, or None if the pod is not (or no longer) known
        """
        with self._lock:
            return self._store.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store)

    def start(self) -> None:
        """Start the list/watch thread. Must be called from the event loop."""
        if self._thread and self._thread.is_alive():
            logger.warning("Pod cache already running")
            return

        self._loop = asyncio.get_running_loop()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="pod-cache", daemon=True)
        self._thread.start()
        logger.info(f"Pod cache started (namespace={self.namespace or '<all>'})")

    def stop(self) -> None:
        """Request the watch thread to stop and interrupt any open watch."""
        self._stop.set()
        watcher = self._active_watcher
        if watcher is not None:
            watcher.stop()
        self._synced.clear()
        logger.info("Pod cache stopped")

    async def wait_for_sync(self, timeout: float) -> None:
        """
        Wait until the initial list has been loaded.

        Raises:
            CacheSyncError: If the cache has not synced within ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        while not self._synced.is_set():
            if time.monotonic() >= deadline:
                raise CacheSyncError(f"Timed out after {timeout}s waiting for pod cache to sync")
            await asyncio.sleep(0.1)

    def _list_kwargs(self) -> dict:
        if self.namespace:
            return {"namespace": self.namespace}
        return {}

    def _list_func(self):
        if self.namespace:
            return self.core_api.list_namespaced_pod
        return self.core_api.list_pod_for_all_namespaces

    def _relist(self) -> str | None:
        """
        Replace the store with a fresh list and notify the handler of the diff.

        Returns:
            resourceVersion of the list, to resume the watch from
        """
        pod_list = self._list_func()(**self._list_kwargs())
        fresh = {}
        for pod in pod_list.items or []:
            snapshot = PodSnapshot.from_k8s(pod)
            fresh[snapshot.key] = snapshot

        with self._lock:
            previous = self._store
            self._store = fresh

        for key, snapshot in fresh.items():
            old = previous.get(key)
            if old is None:
                self._dispatch("on_add", snapshot)
            elif old != snapshot:
                self._dispatch("on_update", old, snapshot)
        for key, old in previous.items():
            if key not in fresh:
                self._dispatch("on_delete", old)

        logger.debug(f"Listed {len(fresh)} pods")
        return pod_list.metadata.resource_version if pod_list.metadata else None

    def _apply(self, event_type: str, pod) -> None:
        snapshot = PodSnapshot.from_k8s(pod)
        key = snapshot.key

        with self._lock:
            old = self._store.get(key)
            if event_type == "DELETED":
                self._store.pop(key, None)
            else:
                self._store[key] = snapshot

        if event_type == "DELETED":
            self._dispatch("on_delete", old or snapshot)
        elif old is None:
            self._dispatch("on_add", snapshot)
        else:
            self._dispatch("on_update", old, snapshot)

    def _dispatch(self, method: str, *args: PodSnapshot) -> None:
        if self._handler is None or self._loop is None or self._stop.is_set():
            return
        try:
            self._loop.call_soon_threadsafe(getattr(self._handler, method), *args)
        except RuntimeError:
            # Event loop already closed during shutdown
            logger.debug(f"Dropping {method} notification, event loop is closed")

    def _backoff(self, seconds: int) -> int:
        jittered = seconds * (0.5 + random.random())  # noqa: S311
        self._stop.wait(timeout=jittered)
        return min(seconds * 2, MAX_BACKOFF_SECONDS)

    def _run(self) -> None:
        resource_version: str | None = None
        backoff = 1

        while not self._stop.is_set():
            try:
                resource_version = self._relist()
                self._synced.set()
                logger.info(f"Pod cache synced, watching from resourceVersion {resource_version}")
                break
            except ApiException as e:
                if e.status in {401, 403}:
                    logger.error(
                        f"Kubernetes API access denied while listing pods (status={e.status}). "
                        "Check the controller's RBAC permissions."
                    )
                    return
                logger.error(f"Initial pod list failed: {e}", exc_info=True)
            except Exception as e:
                logger.error(f"Unexpected error during initial pod list: {e}", exc_info=True)
            backoff = self._backoff(backoff)

        backoff = 1
        while not self._stop.is_set():
            watcher = watch.Watch()
            self._active_watcher = watcher
            try:
                for event in watcher.stream(
                    self._list_func(),
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout,
                    **self._list_kwargs(),
                ):
                    if self._stop.is_set():
                        break

                    event_type = event.get("type")
                    pod = event.get("object")
                    if event_type not in {"ADDED", "MODIFIED", "DELETED"} or pod is None:
                        continue

                    if pod.metadata and pod.metadata.resource_version:
                        resource_version = pod.metadata.resource_version
                    self._apply(event_type, pod)

                backoff = 1
            except ApiException as e:
                if e.status == 410:
                    logger.warning("Watch resource version expired, re-listing pods")
                    try:
                        resource_version = self._relist()
                    except Exception as relist_error:
                        logger.error(f"Re-list after 410 failed: {relist_error}", exc_info=True)
                        resource_version = None
                        backoff = self._backoff(backoff)
                    continue
                if e.status in {401, 403}:
                    logger.error(
                        f"Kubernetes API watch denied (status={e.status}). "
                        "Check the controller's RBAC permissions."
                    )
                    return
                logger.error(f"Pod watch failed: {e}", exc_info=True)
                backoff = self._backoff(backoff)
            except Exception as e:
                logger.error(f"Unexpected pod watch error: {e}", exc_info=True)
                backoff = self._backoff(backoff)
            finally:
                watcher.stop()
                self._active_watcher = None
