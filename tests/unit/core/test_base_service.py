"""
Unit tests for core.base_service module.

Tests:
- BaseServiceConfig defaults and validation
- Factory methods (from_yaml, from_dict)
- run_forever() restart loop and consecutive failure limit
- Graceful shutdown via request_shutdown() and wait()
- Context manager support (__aenter__/__aexit__)
- Metric helpers are no-ops when metrics are disabled
"""

import asyncio
from pathlib import Path
from typing import ClassVar
from unittest.mock import patch

import pytest
from pydantic import Field, ValidationError

from chainsync.core.base_service import BaseService, BaseServiceConfig
from chainsync.core.metrics import SERVICE_COUNTER, SERVICE_GAUGE
from chainsync.core.store import Store
from chainsync.models.constants import ServiceName


class DummyServiceConfig(BaseServiceConfig):
    """Test configuration inheriting from BaseServiceConfig."""

    batch: int = Field(default=10, ge=1)


class DummyService(BaseService[DummyServiceConfig]):
    """Minimal service counting its runs."""

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.BLOCK_SYNC
    CONFIG_CLASS: ClassVar[type[DummyServiceConfig]] = DummyServiceConfig

    def __init__(
        self, store: Store, config: DummyServiceConfig | None = None, tag: str = ""
    ) -> None:
        super().__init__(store=store, config=config)
        self.tag = tag
        self.run_count = 0
        self.fail_count = 0
        self.should_fail = False

    async def run(self) -> None:
        self.run_count += 1
        if self.should_fail:
            self.fail_count += 1
            raise RuntimeError("simulated failure")


class TestBaseServiceConfig:
    """BaseServiceConfig defaults and validation."""

    def test_defaults(self) -> None:
        config = BaseServiceConfig()
        assert config.interval == 30.0
        assert config.max_consecutive_failures == 5
        assert config.metrics.enabled is False

    def test_interval_minimum(self) -> None:
        with pytest.raises(ValidationError):
            BaseServiceConfig(interval=0.5)

    def test_zero_failures_means_unlimited(self) -> None:
        assert BaseServiceConfig(max_consecutive_failures=0).max_consecutive_failures == 0

    def test_negative_failures_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BaseServiceConfig(max_consecutive_failures=-1)


class TestInit:
    """BaseService initialization."""

    def test_default_config(self, mock_store: Store) -> None:
        service = DummyService(store=mock_store)
        assert isinstance(service.config, DummyServiceConfig)
        assert service.config.batch == 10

    def test_explicit_config(self, mock_store: Store) -> None:
        config = DummyServiceConfig(interval=5.0, batch=3)
        service = DummyService(store=mock_store, config=config)
        assert service.config is config
        assert service._store is mock_store

    def test_running_until_shutdown(self, mock_store: Store) -> None:
        service = DummyService(store=mock_store)
        assert service.is_running is True
        service.request_shutdown()
        assert service.is_running is False


class TestFactoryMethods:
    """from_dict and from_yaml."""

    def test_from_dict(self, mock_store: Store) -> None:
        service = DummyService.from_dict({"interval": 2.0, "batch": 7}, store=mock_store)
        assert service.config.interval == 2.0
        assert service.config.batch == 7

    def test_from_dict_forwards_kwargs(self, mock_store: Store) -> None:
        service = DummyService.from_dict({}, store=mock_store, tag="extra")
        assert service.tag == "extra"

    def test_from_dict_invalid(self, mock_store: Store) -> None:
        with pytest.raises(ValidationError):
            DummyService.from_dict({"batch": 0}, store=mock_store)

    def test_from_yaml(self, mock_store: Store, tmp_path: Path) -> None:
        config_file = tmp_path / "service.yaml"
        config_file.write_text("interval: 4.0\nbatch: 2\n")
        service = DummyService.from_yaml(str(config_file), store=mock_store)
        assert service.config.interval == 4.0
        assert service.config.batch == 2

    def test_from_yaml_missing_file(self, mock_store: Store) -> None:
        with pytest.raises(FileNotFoundError):
            DummyService.from_yaml("/nonexistent/service.yaml", store=mock_store)


class TestContextManager:
    """Async context manager resets and sets the shutdown event."""

    async def test_clears_then_sets_shutdown(self, mock_store: Store) -> None:
        service = DummyService(store=mock_store)
        service.request_shutdown()
        async with service:
            assert service.is_running is True
        assert service.is_running is False


class TestWait:
    """Interruptible sleep."""

    async def test_returns_false_on_timeout(self, mock_store: Store) -> None:
        service = DummyService(store=mock_store)
        assert await service.wait(0.01) is False

    async def test_returns_true_on_shutdown(self, mock_store: Store) -> None:
        service = DummyService(store=mock_store)

        async def shutdown_soon() -> None:
            await asyncio.sleep(0.02)
            service.request_shutdown()

        task = asyncio.create_task(shutdown_soon())
        assert await service.wait(5.0) is True
        await task


class TestRunForever:
    """Restart loop."""

    async def test_runs_until_shutdown(self, mock_store: Store) -> None:
        service = DummyService(store=mock_store, config=DummyServiceConfig(interval=2.0))
        intervals: list[float] = []

        async def fake_wait(timeout: float) -> bool:
            intervals.append(timeout)
            return service.run_count >= 3

        with patch.object(service, "wait", fake_wait):
            async with service:
                await service.run_forever()

        assert service.run_count == 3
        assert intervals == [2.0, 2.0, 2.0]

    async def test_stops_after_max_failures(self, mock_store: Store) -> None:
        config = DummyServiceConfig(max_consecutive_failures=3)
        service = DummyService(store=mock_store, config=config)
        service.should_fail = True

        async def fake_wait(_timeout: float) -> bool:
            return False

        with patch.object(service, "wait", fake_wait):
            async with service:
                await service.run_forever()

        assert service.fail_count == 3

    async def test_success_resets_failure_streak(self, mock_store: Store) -> None:
        config = DummyServiceConfig(max_consecutive_failures=2)
        service = DummyService(store=mock_store, config=config)

        async def fake_wait(_timeout: float) -> bool:
            # fail, succeed, fail, succeed, ... stop after six cycles
            service.should_fail = not service.should_fail
            return service.run_count >= 6

        with patch.object(service, "wait", fake_wait):
            async with service:
                await service.run_forever()

        assert service.run_count == 6

    async def test_unlimited_failures(self, mock_store: Store) -> None:
        config = DummyServiceConfig(max_consecutive_failures=0)
        service = DummyService(store=mock_store, config=config)
        service.should_fail = True

        async def fake_wait(_timeout: float) -> bool:
            return service.fail_count >= 10

        with patch.object(service, "wait", fake_wait):
            async with service:
                await service.run_forever()

        assert service.fail_count == 10

    async def test_cancelled_error_propagates(self, mock_store: Store) -> None:
        service = DummyService(store=mock_store)

        async def cancelled() -> None:
            raise asyncio.CancelledError

        with patch.object(service, "run", cancelled), pytest.raises(asyncio.CancelledError):
            await service.run_forever()


class TestMetricHelpers:
    """set_gauge and inc_counter."""

    def test_noop_when_disabled(self, mock_store: Store) -> None:
        service = DummyService(store=mock_store)
        with patch.object(SERVICE_GAUGE, "labels") as gauge, patch.object(
            SERVICE_COUNTER, "labels"
        ) as counter:
            service.set_gauge("cursor", 5)
            service.inc_counter("blocks_synced", 3)
        gauge.assert_not_called()
        counter.assert_not_called()

    def test_records_when_enabled(self, mock_store: Store) -> None:
        config = DummyServiceConfig(metrics={"enabled": True})
        service = DummyService(store=mock_store, config=config)
        with patch.object(SERVICE_GAUGE, "labels") as gauge, patch.object(
            SERVICE_COUNTER, "labels"
        ) as counter:
            service.set_gauge("cursor", 5)
            service.inc_counter("blocks_synced", 3)
        gauge.assert_called_once_with(service="block_sync", name="cursor")
        gauge.return_value.set.assert_called_once_with(5)
        counter.assert_called_once_with(service="block_sync", name="blocks_synced")
        counter.return_value.inc.assert_called_once_with(3)


class TestAbstract:
    """BaseService cannot be instantiated without run()."""

    def test_cannot_instantiate_base(self, mock_store: Store) -> None:
        with pytest.raises(TypeError):
            BaseService(store=mock_store)  # type: ignore[abstract]
