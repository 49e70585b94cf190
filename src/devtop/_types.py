"""Core types: enums and snapshot data structures."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from devtop._errors import DeviceReadError

# Native queries report this when a device exposes no utilization counter.
UTILIZATION_UNAVAILABLE = -1


class MetricKind(enum.Enum):
    """Kind of metric a backend can provide to the rendering layer."""

    TEMP = "temp"
    MEM = "mem"
    USAGE = "usage"


class SamplerState(enum.Enum):
    """Lifecycle of a backend's sampling loop."""

    DISABLED = "disabled"
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class MemoryInfo:
    """Memory usage of one device, in bytes."""

    total: int
    used: int
    used_percent: float

    @classmethod
    def from_counts(cls, total: int, used: int) -> MemoryInfo:
        """Build from a total/used pair.

        A zero total cannot be turned into a percentage, so it is reported
        as a read error instead of 0%.
        """
        if total == 0:
            raise DeviceReadError("total memory is zero")
        return cls(total=total, used=used, used_percent=used / total * 100.0)


@dataclass(frozen=True)
class Snapshot:
    """Complete published state of one backend.

    Instances are never mutated once shared; a sampling cycle publishes a
    new one.
    """

    temps: dict[str, int] = field(default_factory=dict)
    mems: dict[str, MemoryInfo] = field(default_factory=dict)
    usage: dict[str, int] = field(default_factory=dict)
    errors: dict[str, Exception] = field(default_factory=dict)

    @property
    def labels(self) -> set[str]:
        return set(self.temps) | set(self.mems) | set(self.usage)


@dataclass(frozen=True)
class DeviceReading:
    """Plain copy of one device's values returned by a native GPU query."""

    name: str
    total_memory: int
    used_memory: int
    utilization: int = UTILIZATION_UNAVAILABLE
    temperature: int | None = None
    error: Exception | None = None
