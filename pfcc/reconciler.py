from __future__ import annotations

import time
from queue import Empty, Full, Queue
from threading import Event, Thread
from typing import Any, Iterable

from .docker_ops import (
    EVENT_DESTROY,
    EVENT_START,
    EVENT_STOP,
    EVENT_UPDATE,
    ContainerEvent,
    ContainerInfo,
)
from .endpoints import RoutingError
from .labels import ENABLE_LABEL
from .log import get_logger
from .manager import HAProxyManager, SyncError, ValidationFailed
from .retry import RetryCancelled
from .runtime import RuntimeState, utc_now


log = get_logger(__name__)

_WAKE = object()


class Controller:
    """Drives the manager from a poll timer and the runtime event streams.

    Timer ticks and container events are serialized through one queue and
    handled on a single thread, so a container's backend/frontend/apply
    sequence never interleaves with another sync.
    """

    def __init__(
        self,
        manager: HAProxyManager,
        runtimes: Iterable[Any],
        state: RuntimeState | None = None,
        poll_interval_s: float = 30.0,
    ):
        self.manager = manager
        self.state = state or RuntimeState()
        self.poll_interval_s = max(0.1, float(poll_interval_s))
        # Shared with the manager so retry waits wake up on shutdown too.
        self._stop: Event = manager.stop
        self.queue: Queue[Any] = Queue(maxsize=100)
        self._runtimes = [r for r in runtimes if self._runtime_available(r)]
        self._thr: Thread | None = None
        self._watchers: list[Thread] = []

    @staticmethod
    def _runtime_available(runtime: Any) -> bool:
        ok = runtime.is_available()
        if not ok:
            log.warning("Container runtime %s not available", runtime.name)
        return ok

    def available_runtimes(self) -> list[str]:
        return [r.name for r in self._runtimes]

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # ---- lifecycle ----

    def start(self) -> None:
        """Run the loop on a daemon thread. Raises RuntimeError without a runtime."""
        if self._thr and self._thr.is_alive():
            return
        if not self._runtimes:
            raise RuntimeError("no container runtimes available")
        log.info("Available container runtimes: %s", ", ".join(self.available_runtimes()))
        self._perform_health_check()
        for runtime in self._runtimes:
            t = Thread(target=self._watch, args=(runtime,), name=f"watch-{runtime.name}", daemon=True)
            t.start()
            self._watchers.append(t)
        self._thr = Thread(target=self._loop, name="pfcc-controller", daemon=True)
        self._thr.start()

    def stop(self, timeout_s: float | None = 5.0) -> None:
        self._stop.set()
        try:
            self.queue.put_nowait(_WAKE)
        except Full:
            pass
        if self._thr:
            self._thr.join(timeout_s)
            if self._thr.is_alive():
                # The loop may still be mid-request; its clients stay open.
                log.warning("Controller loop did not stop within %ss", timeout_s)
                return
        self.manager.close()

    def _watch(self, runtime: Any) -> None:
        while not self._stop.is_set():
            try:
                runtime.watch(self._stop, self.queue.put)
            except Exception as e:
                log.error("Container runtime %s event stream failed: %s", runtime.name, e)
            # Re-attach after a pause if the stream ended on its own.
            self._stop.wait(self.poll_interval_s)

    def _loop(self) -> None:
        log.info("Starting pfSense Container Controller loop")
        next_tick = time.monotonic()
        while not self._stop.is_set():
            timeout = max(0.0, next_tick - time.monotonic())
            try:
                item = self.queue.get(timeout=timeout)
            except Empty:
                item = None
            if self._stop.is_set():
                break
            try:
                if isinstance(item, ContainerEvent):
                    self.handle_event(item)
                # Due ticks run even when the queue never drains.
                if time.monotonic() >= next_tick:
                    next_tick = time.monotonic() + self.poll_interval_s
                    self.perform_sync()
            except RetryCancelled:
                break
            except Exception as e:
                log.exception("Controller tick failed: %s: %s", type(e).__name__, e)
                self.state.record_error()
        log.info("Controller loop stopped")

    # ---- sync units ----

    def _list_containers(self) -> list[ContainerInfo]:
        label = None if self.manager.parser.traefik_compat_mode else f"{ENABLE_LABEL}=true"
        out: list[ContainerInfo] = []
        for runtime in self._runtimes:
            out.extend(runtime.list_containers(label))
        return [c for c in out if self.manager.parser.is_candidate(c.labels)]

    def perform_sync(self) -> None:
        """Full resync of every eligible container; one failure never stops the cycle."""
        start = utc_now()
        try:
            try:
                containers = self._list_containers()
            except Exception as e:
                log.error("Sync failed: failed to list containers: %s", e)
                self.state.record_error()
                return
            log.info("Found %d containers to sync", len(containers))
            for info in containers:
                if self._stop.is_set():
                    raise RetryCancelled("controller stopping")
                self.sync_container(info)
        finally:
            self.state.record_sync(start)

    def sync_container(self, info: ContainerInfo) -> None:
        if info.state != "running":
            log.debug("Skipping non-running container %s (state: %s)", info.name, info.state)
            return
        try:
            if self.manager.sync_container(info):
                self.state.record_container_sync()
        except ValidationFailed as e:
            log.warning("Invalid pfSense labels on container %s: %s", info.name, e)
            self.state.record_error()
        except (SyncError, RoutingError) as e:
            log.error("Failed to sync container %s: %s", info.name, e)
            self.state.record_error()

    def handle_event(self, event: ContainerEvent) -> None:
        info = event.container
        if not self.manager.parser.is_candidate(info.labels):
            return
        log.info("Handling container event: %s for container %s", event.type, info.name)
        if event.type in (EVENT_START, EVENT_UPDATE):
            self.sync_container(info)
        elif event.type in (EVENT_STOP, EVENT_DESTROY):
            try:
                self.manager.remove_container(info)
            except RoutingError as e:
                log.error("Failed to remove container %s on %s event: %s", info.name, event.type, e)
                self.state.record_error()
        else:
            log.debug("Ignoring event type %s for container %s", event.type, info.name)

    # ---- endpoint health ----

    def _perform_health_check(self) -> None:
        results = self.manager.health_check()
        healthy = sum(1 for err in results.values() if err is None)
        log.info("Health check completed: %d/%d endpoints healthy", healthy, len(results))
