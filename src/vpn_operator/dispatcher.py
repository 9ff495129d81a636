"""Event dispatch: watch VPN objects and feed reconcile passes.

ARCHITECTURE:
- RecordWatcher streams VPN events from the API server in a thread and
  hands each object's key to the work queue.
- WorkQueue deduplicates keys and never hands one key to two workers. A
  trigger that arrives while a key is being processed is replayed after
  the pass finishes.
- Controller runs N async workers. Each pass runs the synchronous
  reconciler in the default executor.

Backoff for failed passes lives here and only here: exponential from
RETRY_BACKOFF_BASE_SECONDS with 20% jitter, capped at
MAX_RETRY_BACKOFF_SECONDS.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
from collections.abc import Callable
from typing import Any

from kubernetes import watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .config import (
    CRD_GROUP,
    CRD_PLURAL,
    CRD_VERSION,
    DEFAULT_MAX_CONCURRENT_RECONCILES,
    DEFAULT_WATCH_TIMEOUT_SECONDS,
    MAX_RETRY_BACKOFF_SECONDS,
    RETRY_BACKOFF_BASE_SECONDS,
)
from .errors import ConflictError, PermanentError, TransientError
from .models import RecordKey
from .reconciler import ReconcileResult, VPNReconciler

logger = logging.getLogger(__name__)

# Pause before re-opening a watch that failed for a reason other than expiry
WATCH_RETRY_SECONDS = 5

BACKOFF_JITTER_RATIO = 0.2


def backoff_delay(failures: int) -> float:
    """Delay before retrying a key that has failed ``failures`` times in a row."""
    backoff = RETRY_BACKOFF_BASE_SECONDS * (2 ** (max(failures, 1) - 1))
    backoff = min(backoff, MAX_RETRY_BACKOFF_SECONDS)
    jitter = random.uniform(0, backoff * BACKOFF_JITTER_RATIO)
    return min(backoff + jitter, MAX_RETRY_BACKOFF_SECONDS)


class WorkQueue:
    """Per-key serialising work queue with delayed and rate-limited requeue.

    Must be used from a single event loop. Threads hand keys in through
    loop.call_soon_threadsafe(queue.add, key).
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[RecordKey | None] = asyncio.Queue()
        self._queued: set[RecordKey] = set()
        self._processing: set[RecordKey] = set()
        self._dirty: set[RecordKey] = set()
        self._timers: dict[RecordKey, asyncio.TimerHandle] = {}
        self._failures: dict[RecordKey, int] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queued)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: RecordKey) -> None:
        """Queue ``key`` now, superseding any pending delayed requeue."""
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._enqueue(key)

    def add_after(self, key: RecordKey, delay: float) -> None:
        """Queue ``key`` after ``delay`` seconds.

        If a delayed requeue is already pending for the key, the earlier of
        the two wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    def add_rate_limited(self, key: RecordKey) -> float:
        """Queue ``key`` after its error backoff.

        Returns:
            The delay applied.
        """
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        delay = backoff_delay(failures)
        self.add_after(key, delay)
        return delay

    def forget(self, key: RecordKey) -> None:
        """Reset the error backoff of ``key``."""
        self._failures.pop(key, None)

    def failures(self, key: RecordKey) -> int:
        return self._failures.get(key, 0)

    def scheduled(self, key: RecordKey) -> bool:
        """Whether a delayed requeue is pending for ``key``."""
        return key in self._timers

    async def get(self) -> RecordKey | None:
        """Wait for the next key to process.

        Returns:
            A key now owned by the caller until done(), or None once the
            queue is shut down.
        """
        while True:
            key = await self._queue.get()
            if key is None or self._shutting_down:
                # Wake the next waiter too
                self._queue.put_nowait(None)
                return None
            if key not in self._queued:
                continue
            self._queued.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: RecordKey) -> None:
        """Release ``key``; replays it if it was triggered meanwhile."""
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self._enqueue(key)

    def shutdown(self) -> None:
        """Stop handing out keys and cancel pending timers."""
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._queue.put_nowait(None)

    def _fire(self, key: RecordKey) -> None:
        self._timers.pop(key, None)
        self._enqueue(key)

    def _enqueue(self, key: RecordKey) -> None:
        if self._shutting_down:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)


class RecordWatcher:
    """Streams VPN objects and reports their keys.

    Each watch starts without a resourceVersion, so the API server first
    replays every existing object. Re-opening the watch after its
    server-side timeout therefore also resyncs every VPN.
    """

    def __init__(
        self,
        custom_objects: Any,
        on_key: Callable[[RecordKey], None],
        namespace: str = "",
        timeout_seconds: int = DEFAULT_WATCH_TIMEOUT_SECONDS,
    ) -> None:
        self._api = custom_objects
        self._on_key = on_key
        self._namespace = namespace
        self._timeout_seconds = timeout_seconds
        self._stopped = threading.Event()
        self._watch: watch.Watch | None = None

    def run(self) -> None:
        """Watch until stop() is called. Blocks; run it in a thread."""
        logger.info(
            "Starting VPN watch",
            extra={"namespace": self._namespace or "*", "timeout_seconds": self._timeout_seconds},
        )
        while not self._stopped.is_set():
            try:
                self._stream_once()
            except ApiException as e:
                if e.status == 410:
                    logger.info("Watch expired, restarting")
                    continue
                logger.warning(
                    "Watch failed, retrying",
                    extra={"status": e.status, "error": str(e.reason)},
                )
                self._stopped.wait(WATCH_RETRY_SECONDS)
            except HTTPError as e:
                logger.warning("Watch connection failed, retrying", extra={"error": str(e)})
                self._stopped.wait(WATCH_RETRY_SECONDS)
            except Exception as e:
                logger.exception("Watch stream failed, retrying", extra={"error": str(e)})
                self._stopped.wait(WATCH_RETRY_SECONDS)
        logger.info("VPN watch stopped")

    def stop(self) -> None:
        self._stopped.set()
        if self._watch is not None:
            self._watch.stop()

    def _stream_once(self) -> None:
        self._watch = watch.Watch()
        if self._namespace:
            func = self._api.list_namespaced_custom_object
            args: tuple[str, ...] = (CRD_GROUP, CRD_VERSION, self._namespace, CRD_PLURAL)
        else:
            func = self._api.list_cluster_custom_object
            args = (CRD_GROUP, CRD_VERSION, CRD_PLURAL)

        for event in self._watch.stream(func, *args, timeout_seconds=self._timeout_seconds):
            if self._stopped.is_set():
                break
            obj = event.get("object") or {}
            if event.get("type") == "ERROR":
                if obj.get("code") == 410:
                    logger.info("Watch expired, restarting")
                    return
                logger.warning("Watch error event", extra={"error": obj.get("message")})
                continue

            metadata = obj.get("metadata") or {}
            name = metadata.get("name")
            namespace = metadata.get("namespace")
            if name and namespace:
                self._on_key(RecordKey(namespace=namespace, name=name))


class Controller:
    """Runs reconcile passes from the work queue on N async workers."""

    def __init__(
        self,
        reconciler: VPNReconciler,
        workers: int = DEFAULT_MAX_CONCURRENT_RECONCILES,
        queue: WorkQueue | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._workers = workers
        self._queue = queue if queue is not None else WorkQueue()
        self._shutdown_event = asyncio.Event()

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    async def run(
        self,
        watcher_factory: Callable[[Callable[[RecordKey], None]], RecordWatcher] | None = None,
    ) -> None:
        """Process keys until shutdown() is called.

        Args:
            watcher_factory: Builds a RecordWatcher given the key callback.
                The watcher runs in a daemon thread.
        """
        loop = asyncio.get_running_loop()
        watcher: RecordWatcher | None = None
        thread: threading.Thread | None = None

        if watcher_factory is not None:
            watcher = watcher_factory(
                lambda key: loop.call_soon_threadsafe(self._queue.add, key)
            )
            thread = threading.Thread(target=watcher.run, name="vpn-watch", daemon=True)
            thread.start()

        logger.info("Starting controller", extra={"workers": self._workers})
        tasks = [
            asyncio.create_task(self._worker(i), name=f"vpn-worker-{i}")
            for i in range(self._workers)
        ]

        await self._shutdown_event.wait()

        self._queue.shutdown()
        if watcher is not None:
            watcher.stop()
        await asyncio.gather(*tasks)
        logger.info("Controller shutdown complete")

    def shutdown(self) -> None:
        """Signal the controller to stop after in-flight passes finish."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def _worker(self, index: int) -> None:
        while True:
            key = await self._queue.get()
            if key is None:
                return
            try:
                await self.process(key)
            finally:
                self._queue.done(key)

    async def process(self, key: RecordKey) -> ReconcileResult | None:
        """Run one reconcile pass for ``key`` and apply its requeue directive."""
        loop = asyncio.get_running_loop()
        extra: dict[str, Any] = {"vpn": key.name, "namespace": key.namespace}

        try:
            result = await loop.run_in_executor(None, self._reconciler.reconcile, key)
        except ConflictError as e:
            logger.info("VPN changed during reconcile, requeueing", extra={**extra, "error": str(e)})
            self._queue.add(key)
            return None
        except TransientError as e:
            delay = self._queue.add_rate_limited(key)
            logger.warning(
                "Reconcile failed, retrying",
                extra={**extra, "error": str(e), "retry_in_seconds": round(delay, 1)},
            )
            return None
        except PermanentError as e:
            delay = self._queue.add_rate_limited(key)
            logger.error(
                "Reconcile failed",
                extra={
                    **extra,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "retry_in_seconds": round(delay, 1),
                },
            )
            return None
        except Exception as e:
            delay = self._queue.add_rate_limited(key)
            logger.exception(
                "Unexpected reconcile failure",
                extra={**extra, "error": str(e), "retry_in_seconds": round(delay, 1)},
            )
            return None

        self._queue.forget(key)
        if result.requeue:
            if result.requeue_after:
                self._queue.add_after(key, result.requeue_after)
            else:
                self._queue.add(key)
        return result
