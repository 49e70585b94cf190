"""AMD GPU backend reading the Linux sysfs tree."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from devtop import _sysfs
from devtop._errors import DeviceReadError, DiscoveryError
from devtop._ids import IdTable, default_id_table, format_label
from devtop._registry import Registry, register_startup
from devtop._sampler import Sampler
from devtop._startup import start_backend
from devtop._types import MemoryInfo, MetricKind, Snapshot

logger = logging.getLogger("devtop.amd")

AMD_VENDOR_ID = 0x1002
_ACCEPTED_DRIVERS = frozenset({"amdgpu", "radeon"})
_DRIVER_CONTROL_FILES = ("bind", "unbind", "new_id", "remove_id", "uevent", "module")


@dataclass(frozen=True)
class AMDDevice:
    """A discovered AMD GPU."""

    label: str
    path: Path


def read_temp(device_path: Path) -> int:
    """First hwmon ``temp*_input`` in whole degrees, rounded half up from millidegrees."""
    hwmon = _sysfs.first_hwmon_path(device_path)
    value = _sysfs.read_int(_sysfs.first_matching_file(hwmon, "temp", "_input"))
    return (value + 500) // 1000


def read_busy(device_path: Path) -> int:
    return _sysfs.read_int(device_path / "gpu_busy_percent")


def _read_counter(device_path: Path, primary: str, fallback: str) -> int:
    try:
        return _sysfs.read_uint(device_path / primary)
    except DeviceReadError:
        return _sysfs.read_uint(device_path / fallback)


def read_vram(device_path: Path) -> MemoryInfo:
    """VRAM counters, falling back to the CPU-visible VRAM pair."""
    total = _read_counter(device_path, "mem_info_vram_total", "mem_info_vis_vram_total")
    used = _read_counter(device_path, "mem_info_vram_used", "mem_info_vis_vram_used")
    try:
        return MemoryInfo.from_counts(total, used)
    except DeviceReadError as exc:
        raise DeviceReadError(f"AMD GPU error: {exc}") from exc


class AMDBackend:
    """AMD GPUs bound to amdgpu/radeon, found by DRM class or driver binding."""

    key = "amd"
    vendor = "AMD"
    kinds = frozenset({MetricKind.TEMP, MetricKind.MEM, MetricKind.USAGE})

    def __init__(self, sysfs_root: str | Path = "/sys", *, ids: IdTable | None = None) -> None:
        root = Path(sysfs_root)
        self._drm_path = root / "class" / "drm"
        self._driver_path = root / "bus" / "pci" / "drivers" / "amdgpu"
        self._pci_devices_path = root / "bus" / "pci" / "devices"
        self._ids = ids if ids is not None else default_id_table()

    @property
    def searched(self) -> str:
        return f"{self._drm_path} and {self._driver_path}"

    def discover(self) -> list[AMDDevice]:
        primary_error: OSError | None = None
        try:
            gpus = self._discover_by_class()
        except OSError as exc:
            primary_error = exc
            gpus = []
        if gpus:
            return gpus

        logger.debug("No AMD GPUs under %s, trying %s", self._drm_path, self._driver_path)
        try:
            return self._discover_by_driver()
        except FileNotFoundError as exc:
            if primary_error is None:
                # No amdgpu driver directory: nothing bound to amdgpu.
                return []
            raise DiscoveryError(
                f"AMD GPU error: cannot list {self._drm_path} or {self._driver_path}"
            ) from exc
        except OSError as exc:
            raise DiscoveryError(f"AMD GPU error: cannot list {self._driver_path}: {exc}") from exc

    def _discover_by_class(self) -> list[AMDDevice]:
        gpus: list[AMDDevice] = []
        for entry in sorted(self._drm_path.iterdir()):
            name = entry.name
            # card0-DP-1 and friends are connectors, not devices
            if not name.startswith("card") or "-" in name or not entry.is_dir():
                continue
            device_path = entry / "device"
            if not self._is_amd(device_path):
                continue
            driver = _sysfs.driver_name(device_path)
            if driver and driver not in _ACCEPTED_DRIVERS:
                continue
            gpus.append(AMDDevice(label=self._label(name, device_path), path=device_path))
        return gpus

    def _discover_by_driver(self) -> list[AMDDevice]:
        gpus: list[AMDDevice] = []
        for entry in sorted(self._driver_path.iterdir()):
            name = entry.name
            if not name or name.startswith(_DRIVER_CONTROL_FILES):
                continue
            device_path = self._pci_devices_path / name
            if not device_path.exists() or not self._is_amd(device_path):
                continue
            gpus.append(AMDDevice(label=self._label(name, device_path), path=device_path))
        return gpus

    @staticmethod
    def _is_amd(device_path: Path) -> bool:
        try:
            return _sysfs.read_hex(device_path / "vendor") == AMD_VENDOR_ID
        except DeviceReadError:
            return False

    def _label(self, card: str, device_path: Path) -> str:
        model: str | None = None
        try:
            device_id = _sysfs.read_hex(device_path / "device")
            revision_id = _sysfs.read_hex(device_path / "revision")
        except DeviceReadError:
            pass
        else:
            model = self._ids.lookup(device_id, revision_id)
        return format_label(model, _sysfs.pci_slot_name(device_path), card, prefix=self.vendor)

    def read(self, devices: Sequence[AMDDevice]) -> Snapshot:
        snapshot = Snapshot()
        for gpu in devices:
            try:
                snapshot.temps[gpu.label] = read_temp(gpu.path)
            except DeviceReadError as exc:
                snapshot.errors[gpu.label] = exc
            try:
                snapshot.usage[gpu.label] = read_busy(gpu.path)
            except DeviceReadError as exc:
                snapshot.errors[gpu.label] = exc
            try:
                snapshot.mems[gpu.label] = read_vram(gpu.path)
            except DeviceReadError as exc:
                snapshot.errors[gpu.label] = exc
        return snapshot

    def close(self) -> None:
        pass


def start_amd(
    config: Mapping[str, str],
    registry: Registry,
    *,
    sysfs_root: str | Path = "/sys",
    ids: IdTable | None = None,
) -> Sampler | None:
    """Startup function: auto-enabled when AMD GPUs are present unless ``amd=false``."""
    return start_backend(
        config,
        registry,
        lambda: AMDBackend(sysfs_root, ids=ids),
        key="amd",
        aliases=("amdgpu",),
    )


register_startup(start_amd)
