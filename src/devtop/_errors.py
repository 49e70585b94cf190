"""Exception hierarchy shared by all backends."""

from __future__ import annotations


class DevtopError(Exception):
    """Base exception for all devtop errors."""


class StartupError(DevtopError):
    """A backend could not be brought up.

    Fatal only when the backend was explicitly enabled. When several
    startup functions fail, the registry raises one StartupError whose
    ``errors`` lists the individual failures.
    """

    def __init__(self, message: str, errors: list[StartupError] | None = None) -> None:
        super().__init__(message)
        self.errors: list[StartupError] = errors or []


class ConfigError(StartupError):
    """Invalid backend configuration value (e.g. a bad refresh interval)."""


class DiscoveryError(DevtopError):
    """Device enumeration failed outright, or found nothing."""


class DeviceReadError(DevtopError):
    """Reading one metric of one device failed."""


class ResolverUnavailableError(DevtopError):
    """The hardware ID table could not be loaded."""
