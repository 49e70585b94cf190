"""Hardware ID → model name resolution and device label formatting."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from pathlib import Path

from devtop._errors import ResolverUnavailableError

logger = logging.getLogger("devtop.ids")

DEFAULT_IDS_PATHS: tuple[str, ...] = ("/usr/share/libdrm/amdgpu.ids",)

# Applied in order; longer canonical names must come before their prefixes.
_NAME_ALIASES: tuple[tuple[str, str], ...] = (
    ("AMD Instinct MI210", "MI210"),
    ("AMD MI210", "MI210"),
    ("AMD Instinct MI250X / MI250", "MI250"),
    ("AMD Instinct MI250X/MI250", "MI250"),
    ("AMD Instinct MI250", "MI250"),
    ("AMD Instinct MI300X", "MI300X"),
    ("AMD MI300X", "MI300X"),
    ("AMD Instinct MI300", "MI300"),
    ("AMD MI300", "MI300"),
    ("AMD Instinct MI325X", "MI325X"),
    ("AMD MI325X", "MI325X"),
)

IdKey = tuple[int, int]


def parse_ids(lines: Iterable[str]) -> dict[IdKey, str]:
    """Parse ``device_id, revision_id, name`` records.

    Blank lines, ``#`` comments and malformed records are skipped. Commas
    after the second field belong to the name.
    """
    table: dict[IdKey, str] = {}
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "," not in line:
            continue
        parts = line.split(",", 2)
        if len(parts) < 3:
            continue
        dev, rev, name = (p.strip() for p in parts)
        if not dev or not rev or not name:
            continue
        try:
            key = (int(dev, 16), int(rev, 16))
        except ValueError:
            continue
        table[key] = name
    return table


class IdTable:
    """Lazily loaded, memoized ID table.

    The first caller loads the file; concurrent first callers wait on the
    same lock and reuse the result. A missing file is memoized too, so the
    filesystem is probed once per table.
    """

    def __init__(self, paths: Sequence[str | Path] = DEFAULT_IDS_PATHS) -> None:
        self._paths = tuple(Path(p) for p in paths)
        self._lock = threading.Lock()
        self._loaded = False
        self._table: dict[IdKey, str] | None = None
        self._error: ResolverUnavailableError | None = None

    def load(self) -> dict[IdKey, str]:
        with self._lock:
            if not self._loaded:
                self._table, self._error = self._read()
                self._loaded = True
        if self._error is not None:
            raise self._error
        assert self._table is not None
        return self._table

    def _read(self) -> tuple[dict[IdKey, str] | None, ResolverUnavailableError | None]:
        for path in self._paths:
            try:
                with path.open(encoding="utf-8", errors="replace") as f:
                    table = parse_ids(f)
            except OSError:
                continue
            logger.debug("Loaded %d GPU ids from %s", len(table), path)
            return table, None
        names = ", ".join(str(p) for p in self._paths)
        logger.debug("GPU id table unavailable (checked %s)", names)
        return None, ResolverUnavailableError(f"GPU id table not found (checked {names})")

    def lookup(self, device_id: int, revision_id: int) -> str | None:
        """Model name for the pair, or None when unknown or the table is unavailable."""
        try:
            table = self.load()
        except ResolverUnavailableError:
            return None
        return table.get((device_id, revision_id)) or None


_default_table = IdTable()


def default_id_table() -> IdTable:
    """The process-wide table shared by every backend instance."""
    return _default_table


def simplify_name(name: str) -> str:
    clean = name.strip()
    for long_name, alias in _NAME_ALIASES:
        clean = clean.replace(long_name, alias)
    return clean


def simplify_pci_slot(slot: str) -> str:
    """``0000:2f:00.0`` → ``2f``."""
    clean = slot.strip()
    clean = clean.removeprefix("0000:")
    return clean.removesuffix(":00.0")


def format_label(model: str | None, slot: str, card: str, *, prefix: str = "AMD") -> str:
    """Build a device label.

    ``<model>.<slot>`` when both are known, ``<model>.<card>`` without a
    slot, ``<prefix>.<card>`` when the model is unknown.
    """
    clean_name = simplify_name(model) if model else ""
    if not clean_name:
        return f"{prefix}.{card}"
    clean_slot = simplify_pci_slot(slot)
    if clean_slot:
        return f"{clean_name}.{clean_slot}"
    return f"{clean_name}.{card}"
