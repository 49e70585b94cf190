"""NVIDIA GPU backend using NVML through pynvml."""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from typing import Any

from devtop._backend import GPUQuery, QueryBackend
from devtop._errors import DeviceReadError, DiscoveryError
from devtop._registry import Registry, register_startup
from devtop._sampler import Sampler
from devtop._startup import start_backend
from devtop._types import UTILIZATION_UNAVAILABLE, DeviceReading, MetricKind

logger = logging.getLogger("devtop.nvml")

# pynvml is optional; the backend reports itself unavailable without it.
# Suppress deprecation warning from pynvml (recommends nvidia-ml-py).
warnings.filterwarnings("ignore", category=FutureWarning, message=".*pynvml.*deprecated.*")
try:
    import pynvml

    _HAS_PYNVML = True
except ImportError:
    pynvml = None  # type: ignore[assignment,unused-ignore]
    _HAS_PYNVML = False


def _text(value: Any) -> str:
    # Older pynvml releases return bytes.
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return str(value)


class NvmlQuery:
    """GPUQuery over NVML. Initializes NVML on construction."""

    def __init__(self) -> None:
        if not _HAS_PYNVML:
            logger.info("pynvml not available, NVIDIA backend disabled")
            raise DiscoveryError("NVIDIA GPU error: pynvml is not installed")
        assert pynvml is not None
        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as exc:
            raise DiscoveryError(f"NVIDIA GPU error: {exc}") from exc

    def query(self) -> list[DeviceReading]:
        assert pynvml is not None
        try:
            count = pynvml.nvmlDeviceGetCount()
        except pynvml.NVMLError as exc:
            raise DiscoveryError(f"NVIDIA GPU error: {exc}") from exc
        return [self._read_one(i) for i in range(count)]

    def _read_one(self, index: int) -> DeviceReading:
        assert pynvml is not None
        try:
            handle = pynvml.nvmlDeviceGetHandleByIndex(index)
            name = _text(pynvml.nvmlDeviceGetName(handle))
        except pynvml.NVMLError as exc:
            return DeviceReading(
                name="NVIDIA", total_memory=0, used_memory=0,
                error=DeviceReadError(f"NVIDIA GPU error: {exc}"),
            )

        error: Exception | None = None
        total = used = 0
        utilization = UTILIZATION_UNAVAILABLE
        temperature: int | None = None
        try:
            mem = pynvml.nvmlDeviceGetMemoryInfo(handle)
            total, used = int(mem.total), int(mem.used)
        except pynvml.NVMLError as exc:
            error = DeviceReadError(f"NVIDIA GPU error: memory: {exc}")
        try:
            utilization = int(pynvml.nvmlDeviceGetUtilizationRates(handle).gpu)
        except pynvml.NVMLError as exc:
            error = DeviceReadError(f"NVIDIA GPU error: utilization: {exc}")
        try:
            temperature = int(pynvml.nvmlDeviceGetTemperature(handle, pynvml.NVML_TEMPERATURE_GPU))
        except pynvml.NVMLError as exc:
            error = DeviceReadError(f"NVIDIA GPU error: temperature: {exc}")
        return DeviceReading(
            name=name,
            total_memory=total,
            used_memory=used,
            utilization=utilization,
            temperature=temperature,
            error=error,
        )

    def close(self) -> None:
        try:
            assert pynvml is not None
            pynvml.nvmlShutdown()
        except Exception:  # noqa: BLE001
            pass


def start_nvidia(
    config: Mapping[str, str],
    registry: Registry,
    *,
    query: GPUQuery | None = None,
) -> Sampler | None:
    """Startup function: runs only when ``nvidia=true``."""
    return start_backend(
        config,
        registry,
        lambda: QueryBackend(
            "nvidia",
            query if query is not None else NvmlQuery(),
            vendor="NVIDIA",
            searched="NVML devices",
            kinds=frozenset({MetricKind.TEMP, MetricKind.MEM, MetricKind.USAGE}),
        ),
        key="nvidia",
        auto_detect=False,
    )


register_startup(start_nvidia)
