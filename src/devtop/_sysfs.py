"""Small readers for sysfs leaf files."""

from __future__ import annotations

import os
from pathlib import Path

from devtop._errors import DeviceReadError


def read_text(path: Path) -> str:
    """Read a leaf file; undecodable bytes become U+FFFD and fail any later parse."""
    try:
        return path.read_text(errors="replace").strip()
    except OSError as exc:
        raise DeviceReadError(f"cannot read {path}: {exc.strerror or exc}") from exc


def _parse(path: Path, base: int) -> int:
    text = read_text(path)
    try:
        return int(text, base)
    except ValueError as exc:
        raise DeviceReadError(f"unexpected value {text!r} in {path}") from exc


def read_hex(path: Path) -> int:
    """Read an id file such as ``vendor`` (``0x1002``); a bare ``1002`` is also hex."""
    return _parse(path, 16)


def read_int(path: Path) -> int:
    return _parse(path, 10)


def read_uint(path: Path) -> int:
    value = _parse(path, 10)
    if value < 0:
        raise DeviceReadError(f"negative counter {value} in {path}")
    return value


def driver_name(device_path: Path) -> str:
    """Basename of the bound driver, or ``""`` when no driver link exists."""
    try:
        link = os.readlink(device_path / "driver")
    except OSError:
        return ""
    return os.path.basename(link)


def pci_slot_name(device_path: Path) -> str:
    """``PCI_SLOT_NAME`` from the device's uevent file, or ``""``."""
    try:
        uevent = (device_path / "uevent").read_text(errors="replace")
    except OSError:
        return ""
    for line in uevent.splitlines():
        if line.startswith("PCI_SLOT_NAME="):
            return line[len("PCI_SLOT_NAME="):].strip()
    return ""


def first_hwmon_path(device_path: Path) -> Path:
    hwmon_root = device_path / "hwmon"
    try:
        entries = sorted(hwmon_root.iterdir())
    except OSError as exc:
        raise DeviceReadError(f"cannot list {hwmon_root}: {exc.strerror or exc}") from exc
    for entry in entries:
        if entry.is_dir():
            return entry
    raise DeviceReadError(f"no hwmon directory under {hwmon_root}")


def first_matching_file(directory: Path, prefix: str, suffix: str) -> Path:
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        raise DeviceReadError(f"cannot list {directory}: {exc.strerror or exc}") from exc
    for entry in entries:
        if entry.name.startswith(prefix) and entry.name.endswith(suffix) and entry.is_file():
            return entry
    raise DeviceReadError(f"no {prefix}*{suffix} file in {directory}")
