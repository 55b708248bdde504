"""
Watch-based caches of cluster state.

A WatchCache lists a resource once, marks itself synced, then follows a watch
stream to keep an in-memory copy current. It runs in a daemon thread since the
kubernetes client is blocking. Listeners are notified of every change with
the event type and the object as a plain dictionary.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from kubernetes import watch
from kubernetes.client.rest import ApiException

from .kubernetes import to_dict

logger = logging.getLogger(__name__)

EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"

Listener = Callable[[str, dict[str, Any]], None]


def object_key(obj: dict[str, Any]) -> str:
    """Cache key of an object: ``namespace/name`` or ``name`` when cluster scoped."""
    metadata = obj.get("metadata") or {}
    namespace = metadata.get("namespace")
    name = metadata.get("name", "")
    return f"{namespace}/{name}" if namespace else name


class WatchCache:
    """In-memory copy of one resource kind, kept current by a watch."""

    def __init__(
        self,
        name: str,
        list_func: Callable[..., Any],
        timeout_seconds: int = 60,
        retry_delay: float = 1.0,
        **list_kwargs: Any,
    ):
        """
        Initialize the cache.

        Args:
            name: Name used in logs and by the startup synchronizer
            list_func: Bound list API method, e.g. ``CoreV1Api.list_namespaced_config_map``
            timeout_seconds: Server-side timeout of each watch request
            retry_delay: Delay before relisting after a failure
            **list_kwargs: Arguments for list_func (namespace, field_selector, ...)
        """
        self.name = name
        self._list_func = list_func
        self._list_kwargs = list_kwargs
        self._timeout_seconds = timeout_seconds
        self._retry_delay = retry_delay
        self._store: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._synced = threading.Event()
        self._listeners: list[Listener] = []
        self._thread: threading.Thread | None = None

    @property
    def has_synced(self) -> bool:
        """True once the initial list has been stored."""
        return self._synced.is_set()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            return self._store.get(key)

    def items(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._store.values())

    def add_listener(self, listener: Listener) -> None:
        """Register a callback invoked with (event_type, obj) on every change."""
        self._listeners.append(listener)

    def start(self, stop: threading.Event) -> threading.Thread:
        """Run the cache in a daemon thread until ``stop`` is set."""
        if self._thread is None:
            self._thread = threading.Thread(
                target=self.run, args=(stop,), name=f"watch-{self.name}", daemon=True
            )
            self._thread.start()
        return self._thread

    def run(self, stop: threading.Event) -> None:
        """List and watch until ``stop`` is set."""
        while not stop.is_set():
            try:
                resource_version = self._list()
                self._watch(resource_version, stop)
            except ApiException as e:
                if e.status == 410:
                    logger.info(f"Watch for {self.name} expired, relisting")
                    continue
                logger.warning(
                    f"Watch cache {self.name} failed: {e.reason}",
                    extra={"cache_name": self.name},
                )
                stop.wait(self._retry_delay)
            except Exception as e:
                logger.error(
                    f"Watch cache {self.name} failed: {e}",
                    extra={"cache_name": self.name},
                    exc_info=True,
                )
                stop.wait(self._retry_delay)

    def _list(self) -> str:
        result = to_dict(self._list_func(**self._list_kwargs))
        items = result.get("items") or []
        fresh = {object_key(item): item for item in items}

        with self._lock:
            previous = self._store
            self._store = fresh

        for key, obj in fresh.items():
            self._notify(EVENT_MODIFIED if key in previous else EVENT_ADDED, obj)
        for key, obj in previous.items():
            if key not in fresh:
                self._notify(EVENT_DELETED, obj)

        if not self._synced.is_set():
            logger.info(
                f"Cache {self.name} synced with {len(fresh)} objects",
                extra={"cache_name": self.name},
            )
            self._synced.set()

        return (result.get("metadata") or {}).get("resourceVersion", "")

    def _watch(self, resource_version: str, stop: threading.Event) -> None:
        """Follow watch streams until one needs a relist or ``stop`` is set."""
        while not stop.is_set():
            stream = watch.Watch()
            for event in stream.stream(
                self._list_func,
                resource_version=resource_version,
                timeout_seconds=self._timeout_seconds,
                **self._list_kwargs,
            ):
                if stop.is_set():
                    stream.stop()
                    return

                event_type = event["type"]
                obj = event.get("raw_object") or to_dict(event["object"])

                if event_type == "ERROR":
                    if obj.get("code") == 410:
                        logger.info(f"Watch for {self.name} expired, relisting")
                        return
                    raise RuntimeError(f"watch error: {obj.get('message')}")

                resource_version = (obj.get("metadata") or {}).get(
                    "resourceVersion", resource_version
                )
                if event_type == "BOOKMARK":
                    continue
                self._apply(event_type, obj)

    def _apply(self, event_type: str, obj: dict[str, Any]) -> None:
        key = object_key(obj)
        with self._lock:
            if event_type == EVENT_DELETED:
                self._store.pop(key, None)
            else:
                self._store[key] = obj
        self._notify(event_type, obj)

    def _notify(self, event_type: str, obj: dict[str, Any]) -> None:
        for listener in self._listeners:
            try:
                listener(event_type, obj)
            except Exception as e:
                logger.error(
                    f"Listener of cache {self.name} failed: {e}",
                    extra={"cache_name": self.name},
                    exc_info=True,
                )
