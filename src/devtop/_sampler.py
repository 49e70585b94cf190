"""Per-backend sampling loop and snapshot cache."""

from __future__ import annotations

import dataclasses
import logging
import threading

from devtop._backend import DeviceBackend
from devtop._config import DEFAULT_REFRESH_S
from devtop._errors import DiscoveryError
from devtop._types import MemoryInfo, SamplerState, Snapshot

logger = logging.getLogger("devtop.sampler")

_JOIN_TIMEOUT_S = 2.0


class Sampler:
    """Daemon thread that periodically re-discovers devices and re-reads metrics.

    All I/O happens into a fresh Snapshot that nothing else can see yet; the
    lock is held only to swap the published reference, and by readers only
    to copy out of it.
    """

    def __init__(self, backend: DeviceBackend, *, interval_s: float = DEFAULT_REFRESH_S) -> None:
        self._backend = backend
        self._interval_s = interval_s
        self._lock = threading.Lock()
        self._snapshot = Snapshot()
        self._state = SamplerState.DISABLED
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def backend(self) -> DeviceBackend:
        return self._backend

    @property
    def state(self) -> SamplerState:
        return self._state

    @property
    def snapshot(self) -> Snapshot:
        """The currently published snapshot. Treat as read-only."""
        with self._lock:
            return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Sample once synchronously, then keep sampling in the background."""
        if self._thread is not None:
            return
        self._state = SamplerState.INITIALIZING
        self._sample()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"devtop-{self._backend.key}", daemon=True
        )
        self._state = SamplerState.RUNNING
        self._thread.start()

    def stop(self) -> None:
        """Cancel the loop and release the backend.

        A read in flight is not interrupted. If it outlasts the join timeout
        the backend is left open.
        """
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=_JOIN_TIMEOUT_S)
        self._state = SamplerState.STOPPED
        if thread is not None and thread.is_alive():
            logger.warning(
                "%s sampler did not stop within %.1fs; backend left open",
                self._backend.key, _JOIN_TIMEOUT_S,
            )
            return
        self._backend.close()

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_s):
            self._sample()

    def _sample(self) -> None:
        try:
            self.refresh()
        except Exception as exc:  # noqa: BLE001
            logger.debug("%s sampling cycle failed", self._backend.key, exc_info=True)
            self._record_backend_error(exc)

    def refresh(self) -> None:
        """Run one full discovery + read cycle and publish the result."""
        backend = self._backend
        try:
            devices = backend.discover()
        except DiscoveryError as exc:
            logger.debug("%s discovery failed: %s", backend.key, exc)
            self._record_backend_error(exc)
            return

        if not devices:
            snapshot = Snapshot(errors={
                backend.key: DiscoveryError(
                    f"{backend.vendor} GPU error: no {backend.vendor} GPUs found "
                    f"(checked {backend.searched})"
                ),
            })
        else:
            snapshot = backend.read(devices)

        with self._lock:
            self._snapshot = snapshot

    def _record_backend_error(self, exc: Exception) -> None:
        # Last-known-good metrics stay published alongside the new error.
        with self._lock:
            previous = self._snapshot
            self._snapshot = dataclasses.replace(
                previous, errors={**previous.errors, self._backend.key: exc}
            )

    # Provider callbacks: merge cached values into the caller's dict and
    # return a fresh error dict.

    def update_temp(self, temps: dict[str, int]) -> dict[str, Exception]:
        with self._lock:
            snapshot = self._snapshot
            temps.update(snapshot.temps)
            return dict(snapshot.errors)

    def update_mem(self, mems: dict[str, MemoryInfo]) -> dict[str, Exception]:
        with self._lock:
            snapshot = self._snapshot
            mems.update(snapshot.mems)
            return dict(snapshot.errors)

    def update_usage(self, usage: dict[str, int], all_: bool = False) -> dict[str, Exception]:
        # ``all_`` selects per-core vs aggregate views for CPU providers;
        # GPU devices report one value either way.
        with self._lock:
            snapshot = self._snapshot
            usage.update(snapshot.usage)
            return dict(snapshot.errors)
