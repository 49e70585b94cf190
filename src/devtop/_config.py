"""Per-backend configuration resolved from the dashboard's extension vars."""

from __future__ import annotations

import enum
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from devtop._errors import ConfigError

DEFAULT_REFRESH_S = 1.0

_UNIT_SECONDS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,  # U+00B5 micro sign
    "μs": 1e-6,  # U+03BC greek mu
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"^[+-]?(?:{_COMPONENT})+$")
_COMPONENT_RE = re.compile(_COMPONENT)


def parse_duration(value: str) -> float:
    """Parse a duration string such as ``"2s"``, ``"500ms"`` or ``"1m30s"``.

    Returns seconds. Raises ConfigError for malformed or non-positive values,
    since a sampling loop cannot tick at a zero or negative interval.
    """
    text = value.strip()
    if not _DURATION_RE.match(text):
        raise ConfigError(f"invalid duration {value!r}")
    seconds = sum(
        float(number) * _UNIT_SECONDS[unit]
        for number, unit in _COMPONENT_RE.findall(text)
    )
    if text.startswith("-"):
        seconds = -seconds
    if seconds <= 0:
        raise ConfigError(f"non-positive duration {value!r}")
    return seconds


class EnableMode(enum.Enum):
    """How a backend was asked to behave."""

    AUTO = "auto"
    ON = "on"
    OFF = "off"


@dataclass(frozen=True)
class BackendConfig:
    """Immutable configuration for one backend."""

    key: str
    mode: EnableMode = EnableMode.AUTO
    refresh: str | None = None

    @property
    def forced(self) -> bool:
        return self.mode is EnableMode.ON

    @property
    def disabled(self) -> bool:
        return self.mode is EnableMode.OFF

    @property
    def refresh_s(self) -> float:
        """Refresh interval in seconds; parsed lazily so only started backends validate it."""
        if self.refresh is None:
            return DEFAULT_REFRESH_S
        return parse_duration(self.refresh)

    @classmethod
    def from_vars(
        cls,
        key: str,
        config: Mapping[str, str],
        *,
        aliases: Sequence[str] = (),
    ) -> BackendConfig:
        """Resolve ``<key>`` (or an alias) and ``<key>-refresh`` from config.

        ``"true"`` forces the backend on, ``"false"`` forces it off; any other
        value, or none, leaves it to auto-detection. Unknown keys are ignored.
        """
        names = (key, *aliases)
        values = [config.get(name) for name in names]
        if "true" in values:
            mode = EnableMode.ON
        elif "false" in values:
            mode = EnableMode.OFF
        else:
            mode = EnableMode.AUTO
        return cls(key=key, mode=mode, refresh=config.get(f"{key}-refresh"))
