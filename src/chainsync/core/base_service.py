"""
Abstract base class for long-running chainsync services.

``BaseService[ConfigT]`` owns the parts every service shares: a structured
[Logger][chainsync.core.logger.Logger] named after the service, a shutdown
``asyncio.Event``, the restart loop in
[run_forever()][chainsync.core.base_service.BaseService.run_forever] with a
consecutive failure limit, and Prometheus helpers backed by
[MetricsServer][chainsync.core.metrics.MetricsServer].

A service only implements [run()][chainsync.core.base_service.BaseService.run].
For block sync a single ``run()`` may last indefinitely (watch mode); the
``interval`` then acts as the back-off before the protocol is restarted
after a failure.

See Also:
    [Store][chainsync.core.store.Store]: Database facade injected into every
        service.
    [BaseServiceConfig][chainsync.core.base_service.BaseServiceConfig]: Base
        configuration model for all services.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from chainsync.models.constants import ServiceName

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .store import Store
from .yaml import load_yaml


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class BaseServiceConfig(BaseModel):
    """Settings shared by every service driven by ``run_forever()``.

    See Also:
        [MetricsConfig][chainsync.core.metrics.MetricsConfig]: Embedded
            configuration for the Prometheus metrics endpoint.
    """

    interval: float = Field(
        default=30.0,
        ge=1.0,
        description="Seconds between run() calls (restart delay after a failure)",
    )
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Stop after this many consecutive errors (0 = unlimited)",
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Prometheus metrics configuration",
    )


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Abstract base class for all chainsync services.

    Subclasses set ``SERVICE_NAME`` and ``CONFIG_CLASS`` and implement
    [run()][chainsync.core.base_service.BaseService.run].

    Attributes:
        SERVICE_NAME: Service identifier used in logging and metrics labels.
        CONFIG_CLASS: Pydantic model used by the factory methods.
        _store: [Store][chainsync.core.store.Store] database facade.
        _config: Typed service configuration.
        _logger: [Logger][chainsync.core.logger.Logger] named after the service.
        _shutdown_event: Clear while running, set once shutdown is requested.

    Note:
        Lifecycle: ``async with store:`` then ``async with service:`` then
        [run_forever()][chainsync.core.base_service.BaseService.run_forever]
        (or a single [run()][chainsync.core.base_service.BaseService.run]
        with ``--once``).
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, store: Store, config: ConfigT | None = None) -> None:
        self._store = store
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> ConfigT:
        """The typed service configuration (read-only)."""
        return self._config

    @abstractmethod
    async def run(self) -> None:
        """Execute one cycle of the service's main logic.

        Long-running implementations should check
        [is_running][chainsync.core.base_service.BaseService.is_running]
        or sleep through [wait()][chainsync.core.base_service.BaseService.wait]
        so a shutdown request ends the cycle promptly.
        """
        ...

    def request_shutdown(self) -> None:
        """Request a graceful shutdown. Safe to call from signal handlers."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        """Whether the service is still active (shutdown not yet requested)."""
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to ``timeout`` seconds, waking early on shutdown.

        Returns:
            ``True`` if shutdown was requested during the wait, ``False`` if
            the timeout expired.
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    async def run_forever(self) -> None:
        """Call [run()][chainsync.core.base_service.BaseService.run] until shutdown.

        Sleeps ``config.interval`` seconds between calls and gives up after
        ``config.max_consecutive_failures`` failed calls in a row (``0``
        disables the limit). A successful call resets the failure streak.

        Metrics recorded: ``cycles_success``, ``cycles_failed`` and
        ``errors_{ExceptionType}`` counters, ``consecutive_failures`` and
        ``last_cycle_timestamp`` gauges, and the ``cycle_duration_seconds``
        histogram.

        ``CancelledError``, ``KeyboardInterrupt`` and ``SystemExit`` propagate
        immediately and are not counted as failures.
        """
        interval = self._config.interval
        max_consecutive_failures = self._config.max_consecutive_failures
        metrics_enabled = self._config.metrics.enabled

        if metrics_enabled:
            SERVICE_INFO.info({"service": self.SERVICE_NAME})

        self._logger.info(
            "run_forever_started",
            interval=interval,
            max_consecutive_failures=max_consecutive_failures,
        )

        consecutive_failures = 0

        while self.is_running:
            cycle_start = time.monotonic()

            try:
                await self.run()

                duration = time.monotonic() - cycle_start
                self.inc_counter("cycles_success")
                if metrics_enabled:
                    CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(duration)
                self.set_gauge("last_cycle_timestamp", time.time())
                self.set_gauge("consecutive_failures", 0)

                consecutive_failures = 0
                self._logger.info("cycle_completed", next_cycle_s=interval)

            except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
                raise

            except Exception as e:  # top-level error boundary for run_forever
                consecutive_failures += 1

                self.inc_counter("cycles_failed")
                self.set_gauge("consecutive_failures", consecutive_failures)
                self.inc_counter(f"errors_{type(e).__name__}")

                self._logger.error(
                    "run_cycle_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    consecutive_failures=consecutive_failures,
                )

                if (
                    max_consecutive_failures > 0
                    and consecutive_failures >= max_consecutive_failures
                ):
                    self._logger.critical(
                        "max_consecutive_failures_reached",
                        failures=consecutive_failures,
                        limit=max_consecutive_failures,
                    )
                    break

            if await self.wait(interval):
                break

        self._logger.info("run_forever_stopped")

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str, store: Store, **kwargs: Any) -> Self:
        """Create a service from a YAML file parsed into ``CONFIG_CLASS``."""
        return cls.from_dict(load_yaml(config_path), store=store, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], store: Store, **kwargs: Any) -> Self:
        """Create a service from a configuration dictionary.

        Args:
            data: Parsed into the service's ``CONFIG_CLASS``.
            store: Database facade for the service.
            **kwargs: Extra constructor arguments (e.g. a node client).
        """
        config = cast("ConfigT", cls.CONFIG_CLASS(**data))
        return cls(store=store, config=config, **kwargs)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._shutdown_event.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set a point-in-time gauge for this service. No-op when metrics are off."""
        if not self._config.metrics.enabled:
            return
        SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment a cumulative counter for this service. No-op when metrics are off."""
        if not self._config.metrics.enabled:
            return
        SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
