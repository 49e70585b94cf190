"""Shared bring-up logic for backend startup functions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING

from devtop._backend import DeviceBackend
from devtop._config import BackendConfig
from devtop._errors import ConfigError, DevtopError, StartupError
from devtop._sampler import Sampler
from devtop._types import MetricKind

if TYPE_CHECKING:
    from devtop._registry import Registry

logger = logging.getLogger("devtop.startup")


def _unavailable(key: str, forced: bool, exc: DevtopError) -> None:
    if forced:
        raise StartupError(str(exc)) from exc
    logger.debug("%s backend not available", key, exc_info=exc)
    return None


def start_backend(
    config: Mapping[str, str],
    registry: Registry,
    factory: Callable[[], DeviceBackend],
    *,
    key: str,
    aliases: Sequence[str] = (),
    auto_detect: bool = True,
) -> Sampler | None:
    """Decide whether a backend runs, and launch its sampler if so.

    An explicitly enabled backend that fails to initialize or finds no
    devices raises StartupError. An auto-detected one stays absent
    silently. A bad refresh interval is always fatal.
    """
    cfg = BackendConfig.from_vars(key, config, aliases=aliases)
    if cfg.disabled:
        logger.debug("%s backend disabled by configuration", key)
        return None
    if not cfg.forced and not auto_detect:
        return None

    try:
        backend = factory()
    except DevtopError as exc:
        return _unavailable(key, cfg.forced, exc)
    try:
        devices = backend.discover()
    except DevtopError as exc:
        backend.close()
        return _unavailable(key, cfg.forced, exc)

    if not devices:
        backend.close()
        if cfg.forced:
            raise StartupError(
                f"{backend.vendor} GPU error: no {backend.vendor} GPUs found "
                f"(checked {backend.searched})"
            )
        logger.debug("%s backend found no devices", key)
        return None

    try:
        interval_s = cfg.refresh_s
    except ConfigError:
        backend.close()
        raise

    sampler = Sampler(backend, interval_s=interval_s)
    if MetricKind.TEMP in backend.kinds:
        registry.register_temp(sampler.update_temp)
    if MetricKind.MEM in backend.kinds:
        registry.register_mem(sampler.update_mem)
    if MetricKind.USAGE in backend.kinds:
        registry.register_cpu(sampler.update_usage)
    registry.register_sampler(sampler)
    sampler.start()
    logger.info("%s backend enabled with %d device(s)", key, len(devices))
    return sampler
