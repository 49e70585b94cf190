"""Apple GPU backend reading IORegistry performance statistics."""

from __future__ import annotations

import logging
import platform
import plistlib
import subprocess
from collections.abc import Callable, Mapping
from xml.parsers.expat import ExpatError

from devtop._backend import GPUQuery, QueryBackend
from devtop._errors import DiscoveryError
from devtop._registry import Registry, register_startup
from devtop._sampler import Sampler
from devtop._startup import start_backend
from devtop._types import UTILIZATION_UNAVAILABLE, DeviceReading

logger = logging.getLogger("devtop.apple")

_DEFAULT_NAME = "Apple GPU"


def _sysctl_str(name: str) -> str:
    """Read a sysctl string value."""
    result = subprocess.run(
        ["sysctl", "-n", name],  # noqa: S603, S607
        capture_output=True,
        text=True,
        timeout=5,
    )
    return result.stdout.strip()


def _sysctl_int(name: str) -> int:
    """Read a sysctl integer value."""
    return int(_sysctl_str(name))


def _run_ioreg() -> bytes:
    """List IOAccelerator services with their properties as a plist."""
    try:
        result = subprocess.run(
            ["ioreg", "-a", "-r", "-d", "1", "-c", "IOAccelerator"],  # noqa: S603, S607
            capture_output=True,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise DiscoveryError(f"Apple GPU error: failed to enumerate GPUs: {exc}") from exc
    if result.returncode != 0:
        raise DiscoveryError(
            f"Apple GPU error: ioreg exited with status {result.returncode}"
        )
    return result.stdout


def _model_name(value: object) -> str:
    # Some drivers publish the model as NUL-terminated data.
    if isinstance(value, bytes):
        value = value.rstrip(b"\x00").decode("utf-8", errors="replace")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return _DEFAULT_NAME


def parse_ioreg(data: bytes) -> list[tuple[str, dict[str, int]]]:
    """Turn ``ioreg -a`` output into (model name, PerformanceStatistics) per accelerator."""
    if not data.strip():
        return []
    try:
        services = plistlib.loads(data)
    except (ValueError, ExpatError) as exc:
        raise DiscoveryError(f"Apple GPU error: unreadable ioreg output: {exc}") from exc
    if isinstance(services, dict):
        services = [services]
    if not isinstance(services, list):
        return []

    entries: list[tuple[str, dict[str, int]]] = []
    for service in services:
        if not isinstance(service, dict):
            continue
        perf = service.get("PerformanceStatistics")
        stats: dict[str, int] = {}
        if isinstance(perf, dict):
            stats = {
                key: value for key, value in perf.items()
                if isinstance(value, int) and not isinstance(value, bool)
            }
        entries.append((_model_name(service.get("model")), stats))
    return entries


class IORegQuery:
    """GPUQuery over ``ioreg``.

    Unified-memory GPUs share host RAM: used memory comes from the
    accelerator's system allocation counter and total is the host's
    physical memory. Discrete GPUs report their own VRAM counters.
    """

    def __init__(
        self,
        *,
        runner: Callable[[], bytes] = _run_ioreg,
        unified: bool | None = None,
        host_memory: Callable[[], int] | None = None,
    ) -> None:
        self._runner = runner
        self._unified = platform.machine() == "arm64" if unified is None else unified
        self._host_memory = 0
        if self._unified:
            try:
                self._host_memory = (host_memory or (lambda: _sysctl_int("hw.memsize")))()
            except (OSError, ValueError, subprocess.SubprocessError) as exc:
                raise DiscoveryError(f"Apple GPU error: cannot read host memory size: {exc}") from exc

    def query(self) -> list[DeviceReading]:
        readings: list[DeviceReading] = []
        for name, stats in parse_ioreg(self._runner()):
            if not stats:
                logger.debug("%s reports no PerformanceStatistics", name)
            utilization = stats.get("Device Utilization %", UTILIZATION_UNAVAILABLE)
            if self._unified:
                total = self._host_memory
                used = max(stats.get("Alloc system memory", 0), 0)
            else:
                used = stats.get("vramUsedBytes", 0)
                free = stats.get("vramFreeBytes")
                total = used + free if free is not None else 0
            readings.append(DeviceReading(
                name=name,
                total_memory=total,
                used_memory=used,
                utilization=utilization,
            ))
        return readings

    def close(self) -> None:
        pass


def _default_query() -> IORegQuery:
    if platform.system() != "Darwin":
        raise DiscoveryError("Apple GPU error: Apple GPU backend requires macOS")
    return IORegQuery()


def start_apple(
    config: Mapping[str, str],
    registry: Registry,
    *,
    query: GPUQuery | None = None,
) -> Sampler | None:
    """Startup function: runs only when ``apple=true``."""
    return start_backend(
        config,
        registry,
        lambda: QueryBackend(
            "apple",
            query if query is not None else _default_query(),
            vendor="Apple",
            searched="IOAccelerator services",
        ),
        key="apple",
        auto_detect=False,
    )


register_startup(start_apple)
