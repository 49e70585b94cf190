"""devtop: device telemetry backends for terminal resource dashboards."""

from __future__ import annotations

from devtop._errors import (
    ConfigError,
    DeviceReadError,
    DevtopError,
    DiscoveryError,
    ResolverUnavailableError,
    StartupError,
)
from devtop._registry import (
    Registry,
    get_registry,
    register_cpu,
    register_mem,
    register_startup,
    register_temp,
    shutdown,
    startup,
    update_mem,
    update_temp,
    update_usage,
)
from devtop._sampler import Sampler
from devtop._types import MemoryInfo, MetricKind, SamplerState, Snapshot

# Built-in backends register their startup functions on import.
from devtop import _amd, _apple, _nvml  # noqa: E402, F401  isort: skip

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "DeviceReadError",
    "DevtopError",
    "DiscoveryError",
    "MemoryInfo",
    "MetricKind",
    "Registry",
    "ResolverUnavailableError",
    "Sampler",
    "SamplerState",
    "Snapshot",
    "StartupError",
    "__version__",
    "get_registry",
    "register_cpu",
    "register_mem",
    "register_startup",
    "register_temp",
    "shutdown",
    "startup",
    "update_mem",
    "update_temp",
    "update_usage",
]
