"""Tests for _sampler module: publication, failure retention and the loop."""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Sequence

import pytest

import devtop._sampler as sampler_mod
from devtop._errors import DeviceReadError, DiscoveryError
from devtop._sampler import Sampler
from devtop._types import MemoryInfo, MetricKind, SamplerState, Snapshot


class _FakeBackend:
    """Backend whose every read publishes one generation number everywhere."""

    key = "fake"
    vendor = "Fake"
    searched = "/fake/path"
    kinds = frozenset({MetricKind.TEMP, MetricKind.MEM, MetricKind.USAGE})

    def __init__(self, labels: Sequence[str] = ("gpu.0", "gpu.1")) -> None:
        self.labels = list(labels)
        self.fail_discovery = False
        self.explode = False
        self.closed = False
        self._generation = itertools.count(1)
        self.reads = 0

    def discover(self) -> list[str]:
        if self.fail_discovery:
            raise DiscoveryError("enumeration path unreadable")
        return list(self.labels)

    def read(self, devices: Sequence[str]) -> Snapshot:
        if self.explode:
            raise RuntimeError("backend bug")
        self.reads += 1
        gen = next(self._generation)
        snapshot = Snapshot()
        for label in devices:
            snapshot.temps[label] = gen
            snapshot.usage[label] = gen
            snapshot.mems[label] = MemoryInfo(total=1000, used=gen, used_percent=gen / 10)
        return snapshot

    def close(self) -> None:
        self.closed = True


class _BlockingBackend(_FakeBackend):
    """Backend whose second read blocks until released."""

    def __init__(self) -> None:
        super().__init__()
        self.blocked = threading.Event()
        self.release = threading.Event()

    def read(self, devices: Sequence[str]) -> Snapshot:
        if self.reads >= 1:
            self.blocked.set()
            self.release.wait(timeout=5.0)
        return super().read(devices)


def _generations(snapshot: Snapshot) -> set[int]:
    values = set(snapshot.temps.values()) | set(snapshot.usage.values())
    return values | {m.used for m in snapshot.mems.values()}


class TestLifecycle:
    def test_initial_state(self) -> None:
        sampler = Sampler(_FakeBackend())
        assert sampler.state is SamplerState.DISABLED
        assert sampler.snapshot == Snapshot()

    def test_start_samples_synchronously(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend, interval_s=60)
        sampler.start()
        try:
            assert sampler.state is SamplerState.RUNNING
            temps: dict[str, int] = {}
            sampler.update_temp(temps)
            assert temps == {"gpu.0": 1, "gpu.1": 1}
        finally:
            sampler.stop()

    def test_loop_keeps_sampling(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend, interval_s=0.02)
        sampler.start()
        time.sleep(0.2)
        sampler.stop()
        assert backend.reads >= 3

    def test_stop_closes_backend(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend, interval_s=0.05)
        sampler.start()
        sampler.stop()
        assert backend.closed
        assert not sampler.is_running
        assert sampler.state is SamplerState.STOPPED

    def test_thread_is_daemon(self) -> None:
        sampler = Sampler(_FakeBackend(), interval_s=0.05)
        sampler.start()
        assert sampler._thread is not None
        assert sampler._thread.daemon is True
        sampler.stop()

    def test_double_start_is_idempotent(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend, interval_s=60)
        sampler.start()
        thread1 = sampler._thread
        sampler.start()
        assert sampler._thread is thread1
        assert backend.reads == 1
        sampler.stop()

    def test_loop_survives_unexpected_errors(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend, interval_s=0.02)
        sampler.start()
        backend.explode = True
        time.sleep(0.1)
        assert sampler.is_running
        assert isinstance(sampler.snapshot.errors["fake"], RuntimeError)
        assert set(sampler.snapshot.usage) == {"gpu.0", "gpu.1"}
        backend.explode = False
        time.sleep(0.1)
        sampler.stop()
        assert "fake" not in sampler.snapshot.errors

    def test_first_sample_failure_is_recorded_not_raised(self) -> None:
        backend = _FakeBackend()
        backend.explode = True
        sampler = Sampler(backend, interval_s=60)
        sampler.start()
        try:
            assert sampler.state is SamplerState.RUNNING
            assert sampler.is_running
            errors = sampler.update_usage({})
            assert isinstance(errors["fake"], RuntimeError)
        finally:
            sampler.stop()

    def test_stuck_read_leaves_backend_open(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sampler_mod, "_JOIN_TIMEOUT_S", 0.05)
        backend = _BlockingBackend()
        sampler = Sampler(backend, interval_s=0.01)
        sampler.start()
        assert backend.blocked.wait(timeout=2.0)
        sampler.stop()
        try:
            assert sampler.state is SamplerState.STOPPED
            assert not backend.closed
        finally:
            backend.release.set()


class TestRefresh:
    def test_discovery_error_keeps_last_known_good(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend)
        sampler.refresh()
        before = sampler.snapshot

        backend.fail_discovery = True
        sampler.refresh()
        after = sampler.snapshot

        assert after.temps == before.temps
        assert after.mems == before.mems
        assert after.usage == before.usage
        assert isinstance(after.errors["fake"], DiscoveryError)

    def test_discovery_error_keeps_device_errors(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend)
        sampler._snapshot = Snapshot(usage={"gpu.0": 5}, errors={"gpu.0": DeviceReadError("x")})
        backend.fail_discovery = True
        sampler.refresh()
        assert set(sampler.snapshot.errors) == {"gpu.0", "fake"}

    def test_recovery_replaces_errors(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend)
        backend.fail_discovery = True
        sampler.refresh()
        backend.fail_discovery = False
        sampler.refresh()
        assert sampler.snapshot.errors == {}

    def test_zero_devices_publishes_empty_snapshot_with_error(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend)
        sampler.refresh()
        backend.labels = []
        sampler.refresh()
        snapshot = sampler.snapshot
        assert snapshot.labels == set()
        assert list(snapshot.errors) == ["fake"]
        assert "/fake/path" in str(snapshot.errors["fake"])

    def test_removed_device_disappears_wholesale(self) -> None:
        backend = _FakeBackend(["gpu.0", "gpu.1"])
        sampler = Sampler(backend)
        sampler.refresh()
        backend.labels = ["gpu.1"]
        sampler.refresh()
        assert sampler.snapshot.labels == {"gpu.1"}


class TestProviders:
    def test_update_merges_into_caller_dict(self) -> None:
        sampler = Sampler(_FakeBackend(["gpu.0"]))
        sampler.refresh()
        usage = {"cpu0": 12}
        sampler.update_usage(usage, True)
        assert usage == {"cpu0": 12, "gpu.0": 1}

        mems: dict[str, MemoryInfo] = {}
        sampler.update_mem(mems)
        assert mems["gpu.0"].used == 1

    def test_returned_errors_are_a_fresh_copy(self) -> None:
        backend = _FakeBackend()
        sampler = Sampler(backend)
        backend.fail_discovery = True
        sampler.refresh()

        errors = sampler.update_temp({})
        errors.clear()
        assert "fake" in sampler.update_temp({})
        assert sampler.update_temp({}) is not sampler.update_temp({})


class TestAtomicPublication:
    def test_readers_never_see_mixed_generations(self) -> None:
        sampler = Sampler(_FakeBackend([f"gpu.{i}" for i in range(16)]))
        sampler.refresh()
        stop = threading.Event()
        mixed: list[set[int]] = []

        def writer() -> None:
            while not stop.is_set():
                sampler.refresh()

        def reader() -> None:
            while not stop.is_set():
                gens = _generations(sampler.snapshot)
                if len(gens) != 1:
                    mixed.append(gens)
                temps: dict[str, int] = {}
                sampler.update_temp(temps)
                if len(set(temps.values())) != 1:
                    mixed.append(set(temps.values()))

        threads = [threading.Thread(target=writer)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        time.sleep(0.5)
        stop.set()
        for t in threads:
            t.join()

        assert mixed == []
