"""Backend protocols and the shared query-based backend."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from devtop._errors import DevtopError
from devtop._types import DeviceReading, MemoryInfo, MetricKind, Snapshot


@runtime_checkable
class DeviceBackend(Protocol):
    """Structural protocol for hardware telemetry backends.

    ``searched`` names what discovery looks at, for error messages.
    ``discover`` raises DiscoveryError when enumeration itself fails and
    returns an empty list when nothing is present. ``read`` never raises for
    a single device; per-device failures land in ``Snapshot.errors``.
    """

    key: str
    vendor: str
    searched: str
    kinds: frozenset[MetricKind]

    def discover(self) -> Sequence[Any]: ...

    def read(self, devices: Sequence[Any]) -> Snapshot: ...

    def close(self) -> None: ...


@runtime_checkable
class GPUQuery(Protocol):
    """Capability wrapping an opaque native GPU query.

    ``query`` copies every field out of native buffers into DeviceReading
    values and releases those buffers before returning. ``close`` releases
    the native library itself.
    """

    def query(self) -> list[DeviceReading]: ...

    def close(self) -> None: ...


class QueryBackend:
    """Backend for APIs returning an ordered device list without bus info.

    Labels are ``<name>.<index>``; the index follows enumeration order and
    is not stable across hot-plug.
    """

    def __init__(
        self,
        key: str,
        query: GPUQuery,
        *,
        vendor: str,
        searched: str,
        kinds: frozenset[MetricKind] = frozenset({MetricKind.MEM, MetricKind.USAGE}),
    ) -> None:
        self.key = key
        self.vendor = vendor
        self.searched = searched
        self.kinds = kinds
        self._query = query

    def discover(self) -> list[DeviceReading]:
        return self._query.query()

    def read(self, devices: Sequence[DeviceReading]) -> Snapshot:
        snapshot = Snapshot()
        for idx, reading in enumerate(devices):
            label = f"{reading.name}.{idx}"
            # UTILIZATION_UNAVAILABLE is reported as idle
            snapshot.usage[label] = max(reading.utilization, 0)
            if reading.temperature is not None:
                snapshot.temps[label] = reading.temperature
            try:
                snapshot.mems[label] = MemoryInfo.from_counts(reading.total_memory, reading.used_memory)
            except DevtopError as exc:
                snapshot.errors[label] = exc
            if reading.error is not None:
                snapshot.errors[label] = reading.error
        return snapshot

    def close(self) -> None:
        self._query.close()
