"""Backend registry: startup functions and metric provider callbacks."""

from __future__ import annotations

import atexit
import logging
from collections.abc import Callable, Mapping

from devtop._errors import StartupError
from devtop._sampler import Sampler
from devtop._types import MemoryInfo

logger = logging.getLogger("devtop.registry")

StartupFunc = Callable[[Mapping[str, str], "Registry"], object]
TempProvider = Callable[[dict[str, int]], dict[str, Exception]]
MemProvider = Callable[[dict[str, MemoryInfo]], dict[str, Exception]]
UsageProvider = Callable[[dict[str, int], bool], dict[str, Exception]]


class Registry:
    """Ordered registry of backend startup functions and provider callbacks.

    Several backends may register the same provider kind; the update_*
    methods call all of them and union the results. Labels are not
    deduplicated across backends.
    """

    def __init__(self) -> None:
        self._startup: list[StartupFunc] = []
        self._temp: list[TempProvider] = []
        self._mem: list[MemProvider] = []
        self._usage: list[UsageProvider] = []
        self._samplers: list[Sampler] = []

    def register_startup(self, fn: StartupFunc) -> None:
        self._startup.append(fn)

    def register_temp(self, fn: TempProvider) -> None:
        self._temp.append(fn)

    def register_mem(self, fn: MemProvider) -> None:
        self._mem.append(fn)

    def register_cpu(self, fn: UsageProvider) -> None:
        self._usage.append(fn)

    def register_sampler(self, sampler: Sampler) -> None:
        self._samplers.append(sampler)

    @property
    def samplers(self) -> list[Sampler]:
        return list(self._samplers)

    def startup(self, config: Mapping[str, str]) -> None:
        """Run every startup function once, in registration order.

        All functions run even if one fails; failures are then raised
        together as a single StartupError.
        """
        errors: list[StartupError] = []
        for fn in self._startup:
            try:
                fn(config, self)
            except StartupError as exc:
                logger.error("Backend startup failed: %s", exc)
                errors.append(exc)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise StartupError("; ".join(str(e) for e in errors), errors)

    def update_temp(self, temps: dict[str, int]) -> dict[str, Exception]:
        errors: dict[str, Exception] = {}
        for fn in self._temp:
            errors.update(fn(temps))
        return errors

    def update_mem(self, mems: dict[str, MemoryInfo]) -> dict[str, Exception]:
        errors: dict[str, Exception] = {}
        for fn in self._mem:
            errors.update(fn(mems))
        return errors

    def update_usage(self, usage: dict[str, int], all_: bool = False) -> dict[str, Exception]:
        errors: dict[str, Exception] = {}
        for fn in self._usage:
            errors.update(fn(usage, all_))
        return errors

    def shutdown(self) -> None:
        """Stop every sampler launched through this registry."""
        samplers, self._samplers = self._samplers, []
        for sampler in samplers:
            sampler.stop()


_registry = Registry()
_atexit_registered = False


def get_registry() -> Registry:
    """Return the process-wide registry built-in backends register into."""
    return _registry


def register_startup(fn: StartupFunc) -> None:
    _registry.register_startup(fn)


def register_temp(fn: TempProvider) -> None:
    _registry.register_temp(fn)


def register_mem(fn: MemProvider) -> None:
    _registry.register_mem(fn)


def register_cpu(fn: UsageProvider) -> None:
    _registry.register_cpu(fn)


def startup(config: Mapping[str, str]) -> None:
    """Bring up every registered backend using the resolved configuration."""
    global _atexit_registered  # noqa: PLW0603
    if not _atexit_registered:
        atexit.register(shutdown)
        _atexit_registered = True
    _registry.startup(config)


def update_temp(temps: dict[str, int]) -> dict[str, Exception]:
    return _registry.update_temp(temps)


def update_mem(mems: dict[str, MemoryInfo]) -> dict[str, Exception]:
    return _registry.update_mem(mems)


def update_usage(usage: dict[str, int], all_: bool = False) -> dict[str, Exception]:
    return _registry.update_usage(usage, all_)


def shutdown() -> None:
    _registry.shutdown()
