from __future__ import annotations

import json
import logging
import os
import queue
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..domain.chat_models import SessionEvent

try:  # pragma: no cover - optional dependency
    import redis  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    redis = None  # type: ignore


LOG = logging.getLogger("physarum.session")

Listener = Callable[[SessionEvent], None]

CHANNEL_PREFIX = "physarum.events."
CONNECT_TIMEOUT = 0.5
RETRY_INTERVAL = 5.0
MIRROR_QUEUE_MAX = 1000


class RedisMirror:
    """Copies session events onto redis pub/sub from a background thread.

    ``submit`` only enqueues, so a slow or unreachable redis never holds up
    the caller. After a failed connect the mirror waits ``retry_interval``
    seconds before trying again and drops events in the meantime. When the
    queue is full new events are dropped and counted.
    """

    def __init__(
        self,
        url: str,
        retry_interval: float = RETRY_INTERVAL,
        queue_max: int = MIRROR_QUEUE_MAX,
        clock: Callable[[], float] = time.monotonic,
        start: bool = True,
    ) -> None:
        self.url = url
        self._retry_interval = retry_interval
        self._clock = clock
        self._client = None
        self._retry_at = 0.0
        self._queue: "queue.Queue[Optional[Tuple[str, Dict[str, Any]]]]" = queue.Queue(maxsize=max(1, queue_max))
        self._thread: Optional[threading.Thread] = None
        self.connect_attempts = 0
        self.dropped = 0
        if start:
            self.start()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="physarum-redis-mirror", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            LOG.warning("redis_mirror_stop_timeout", extra={"url": self.url})
            return
        if self._thread is not None:
            self._thread.join(timeout)

    def wait_idle(self) -> None:
        """Block until every submitted event has been handled."""
        self._queue.join()

    def submit(self, channel: str, payload: Dict[str, Any]) -> bool:
        try:
            self._queue.put_nowait((channel, payload))
        except queue.Full:
            self.dropped += 1
            LOG.warning("redis_mirror_queue_full", extra={"channel": channel, "dropped": self.dropped})
            return False
        return True

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                self.send(*item)
            finally:
                self._queue.task_done()

    def _connected_client(self):
        if self._client is not None:
            return self._client
        if redis is None:
            return None
        now = self._clock()
        if now < self._retry_at:
            return None
        self.connect_attempts += 1
        try:
            client = redis.Redis.from_url(
                self.url,
                socket_timeout=CONNECT_TIMEOUT,
                socket_connect_timeout=CONNECT_TIMEOUT,
            )
            client.ping()
        except Exception as exc:
            self._retry_at = now + self._retry_interval
            LOG.warning(
                "redis_connect_failed",
                extra={"url": self.url, "err": str(exc), "retry_in": self._retry_interval},
            )
            return None
        self._client = client
        LOG.info("redis_connected", extra={"url": self.url})
        return client

    def send(self, channel: str, payload: Dict[str, Any]) -> bool:
        """Publish one event now, on the calling thread. Returns whether it went out."""
        client = self._connected_client()
        if client is None:
            return False
        try:
            client.publish(channel, json.dumps(payload))
        except Exception as exc:
            LOG.warning("redis_publish_failed", extra={"channel": channel, "err": str(exc)})
            self._client = None
            return False
        return True


_mirror: Optional[RedisMirror] = None
_mirror_lock = threading.Lock()


def get_mirror() -> Optional[RedisMirror]:
    global _mirror
    if _mirror is not None:
        return _mirror
    url = os.getenv("REDIS_URL")
    if not url or redis is None:
        return None
    with _mirror_lock:
        if _mirror is None:
            _mirror = RedisMirror(url)
    return _mirror


def mirror_event(event_type: str, payload: Dict[str, Any]) -> None:
    mirror = get_mirror()
    if mirror is None:
        return
    mirror.submit(f"{CHANNEL_PREFIX}{event_type}", payload)


class EventBus:
    """Ordered, synchronous fan-out of session events to subscribers.

    Listeners run on the publishing thread in subscription order, so the
    order a listener observes is the order events were published. A listener
    that raises is logged and skipped; it never interrupts delivery to the
    others or the mutation that produced the event. The redis mirror only
    receives a queued copy.
    """

    def __init__(self, mirror: bool = True) -> None:
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()
        self._mirror = mirror

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: SessionEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                LOG.exception("event_listener_failed", extra={"event_type": event.type})
        if self._mirror:
            mirror_event(event.type, event.model_dump(mode="json"))
