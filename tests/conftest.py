"""Shared fixtures: a fake sysfs tree and an amdgpu.ids file."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from devtop._ids import IdTable

IDS_TEXT = """\
# List of AMDGPU IDs
#
# Syntax:
# device_id,\trevision_id,\tproduct_name        <-- single tab after comma

1.0.0
74A1,\t00,\tAMD Instinct MI300X
740F,\t02,\tAMD Instinct MI210
73BF,\tC1,\tAMD Radeon RX 6900 XT, Radeon RX 6800
"""


class FakeSysfs:
    """Builds the parts of /sys the AMD backend reads."""

    def __init__(self, root: Path) -> None:
        self.root = root
        (root / "class" / "drm").mkdir(parents=True)

    def _fill_device(
        self,
        device: Path,
        *,
        vendor: str | None,
        device_id: str | None,
        revision: str | None,
        slot: str | None,
        driver: str | None,
        busy: str | None,
        temp: str | None,
        vram_total: str | None,
        vram_used: str | None,
        vis_vram_total: str | None,
        vis_vram_used: str | None,
    ) -> None:
        device.mkdir(parents=True)
        files = {
            "vendor": vendor,
            "device": device_id,
            "revision": revision,
            "uevent": f"DRIVER={driver}\nPCI_SLOT_NAME={slot}\n" if slot is not None else None,
            "gpu_busy_percent": busy,
            "mem_info_vram_total": vram_total,
            "mem_info_vram_used": vram_used,
            "mem_info_vis_vram_total": vis_vram_total,
            "mem_info_vis_vram_used": vis_vram_used,
        }
        for name, content in files.items():
            if content is not None:
                (device / name).write_text(content + "\n")
        if temp is not None:
            hwmon = device / "hwmon" / "hwmon3"
            hwmon.mkdir(parents=True)
            (hwmon / "name").write_text("amdgpu\n")
            (hwmon / "temp1_input").write_text(temp + "\n")
        if driver is not None:
            driver_dir = self.root / "bus" / "pci" / "drivers" / driver
            driver_dir.mkdir(parents=True, exist_ok=True)
            os.symlink(driver_dir, device / "driver")

    def add_card(
        self,
        card: str = "card0",
        *,
        vendor: str | None = "0x1002",
        device_id: str | None = "0x74a1",
        revision: str | None = "0x00",
        slot: str | None = "0000:2f:00.0",
        driver: str | None = "amdgpu",
        busy: str | None = "37",
        temp: str | None = "45500",
        vram_total: str | None = "205822885888",
        vram_used: str | None = "10292822016",
        vis_vram_total: str | None = None,
        vis_vram_used: str | None = None,
    ) -> Path:
        """Add ``class/drm/<card>/device`` and return the device directory."""
        device = self.root / "class" / "drm" / card / "device"
        self._fill_device(
            device, vendor=vendor, device_id=device_id, revision=revision, slot=slot,
            driver=driver, busy=busy, temp=temp, vram_total=vram_total, vram_used=vram_used,
            vis_vram_total=vis_vram_total, vis_vram_used=vis_vram_used,
        )
        return device

    def add_pci_device(self, address: str = "0000:2f:00.0", **kwargs: str | None) -> Path:
        """Add ``bus/pci/devices/<address>`` bound to amdgpu (driver-dir fallback)."""
        device = self.root / "bus" / "pci" / "devices" / address
        params: dict[str, str | None] = {
            "vendor": "0x1002", "device_id": "0x74a1", "revision": "0x00",
            "slot": address, "driver": "amdgpu", "busy": "12", "temp": "50000",
            "vram_total": "1000", "vram_used": "250",
            "vis_vram_total": None, "vis_vram_used": None,
        }
        params.update(kwargs)
        self._fill_device(device, **params)  # type: ignore[arg-type]
        driver_dir = self.root / "bus" / "pci" / "drivers" / "amdgpu"
        driver_dir.mkdir(parents=True, exist_ok=True)
        for control in ("bind", "unbind", "new_id", "remove_id", "uevent"):
            (driver_dir / control).touch()
        os.symlink(device, driver_dir / address)
        return device


@pytest.fixture
def sysfs(tmp_path: Path) -> FakeSysfs:
    return FakeSysfs(tmp_path / "sys")


@pytest.fixture
def ids_file(tmp_path: Path) -> Path:
    path = tmp_path / "amdgpu.ids"
    path.write_text(IDS_TEXT)
    return path


@pytest.fixture
def ids(ids_file: Path) -> IdTable:
    return IdTable([ids_file])


@pytest.fixture
def no_ids(tmp_path: Path) -> IdTable:
    return IdTable([tmp_path / "missing" / "amdgpu.ids"])
