"""CLI entry point for chainsync services.

Runs a service once (``--once``) or continuously alongside a Prometheus
metrics server.

Examples:
    ```bash
    python -m chainsync block_sync
    python -m chainsync block_sync --once --no-watch --cursor 0
    python -m chainsync block_sync --resume --log-level DEBUG
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, NamedTuple

from chainsync.core import ChainsyncError, Store, start_metrics_server
from chainsync.core.base_service import BaseService
from chainsync.core.logger import Logger, StructuredFormatter
from chainsync.core.yaml import load_yaml
from chainsync.models.constants import ServiceName
from chainsync.services.block_sync import BlockSync, SyncJob


CONFIG_BASE = Path("config")
STORE_CONFIG = CONFIG_BASE / "store.yaml"


class ServiceEntry(NamedTuple):
    """Registry entry mapping a service to its class and default config path."""

    cls: type[BaseService[Any]]
    config_path: Path


SERVICE_REGISTRY: dict[str, ServiceEntry] = {
    ServiceName.BLOCK_SYNC: ServiceEntry(
        BlockSync, CONFIG_BASE / "services" / "block_sync.yaml"
    ),
}

logger = Logger("cli")


async def run_service(
    service_name: str,
    service: BaseService[Any],
    *,
    once: bool,
) -> int:
    """Run a service in one-shot or continuous mode.

    Both modes stop gracefully on SIGINT/SIGTERM. Continuous mode also
    serves Prometheus metrics when enabled.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        service.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    if once:
        try:
            async with service:
                await service.run()
            logger.info(f"{service_name}_completed")
            return 0
        except Exception as e:  # CLI error boundary for one-shot mode
            logger.error(f"{service_name}_failed", error=str(e), error_type=type(e).__name__)
            return 1

    metrics_config = service.config.metrics
    metrics_server = await start_metrics_server(metrics_config)

    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    try:
        async with service:
            await service.run_forever()
        return 0
    except Exception as e:  # CLI error boundary for continuous mode
        logger.error(f"{service_name}_failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the service runner."""
    parser = argparse.ArgumentParser(
        prog="chainsync",
        description="chainsync service runner",
    )

    parser.add_argument(
        "service",
        choices=list(SERVICE_REGISTRY.keys()),
        help="Service to run",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Service config path (default: config/services/<service>.yaml)",
    )
    parser.add_argument(
        "--store-config",
        type=Path,
        default=STORE_CONFIG,
        help=f"Store config path (default: {STORE_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run once and exit (default: run continuously)",
    )

    job = parser.add_argument_group("sync job")
    start = job.add_mutually_exclusive_group()
    start.add_argument("--cursor", type=int, help="Start height (overrides sync.cursor)")
    start.add_argument(
        "--resume",
        action="store_true",
        help="Start from the highest stored block height",
    )
    job.add_argument("--offset", type=int, help="Blocks per window (overrides sync.offset)")
    job.add_argument(
        "--watch",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Keep following the head once caught up (overrides sync.watch)",
    )

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Install ``StructuredFormatter`` on the root handler."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(str(path))


def _apply_pool_overrides(
    store_dict: dict[str, Any],
    pool_overrides: dict[str, Any] | None,
    service_name: str,
) -> None:
    """Merge per-service pool overrides into the store configuration.

    ``user`` and ``password_env`` go to ``pool.database``, ``min_size`` and
    ``max_size`` to ``pool.limits``. ``application_name`` defaults to the
    service name.
    """
    pool = store_dict.setdefault("pool", {})

    server_settings = pool.setdefault("server_settings", {})
    if "application_name" not in server_settings:
        server_settings["application_name"] = service_name

    if not pool_overrides:
        return

    if "application_name" in pool_overrides:
        server_settings["application_name"] = pool_overrides["application_name"]

    db_keys = ("user", "password_env")
    db_overrides = {k: pool_overrides[k] for k in db_keys if k in pool_overrides}
    if db_overrides:
        pool.setdefault("database", {}).update(db_overrides)

    limits_keys = ("min_size", "max_size")
    limits_overrides = {k: pool_overrides[k] for k in limits_keys if k in pool_overrides}
    if limits_overrides:
        pool.setdefault("limits", {}).update(limits_overrides)


async def build_job(args: argparse.Namespace, store: Store) -> SyncJob:
    """Build the sync job from CLI overrides.

    With ``--resume`` the cursor is the highest stored height; an empty
    ``block`` table leaves the configured cursor in place.
    """
    cursor = args.cursor
    if args.resume:
        cursor = await store.max_block_height()
        logger.info("resume_cursor", cursor=cursor)
    return SyncJob(cursor=cursor, offset=args.offset, watch=args.watch)


async def main(argv: list[str] | None = None) -> int:
    """Parse args, connect the store, and run the service."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    entry = SERVICE_REGISTRY[args.service]
    config_path = args.config or entry.config_path

    store_dict = _load_yaml_dict(args.store_config)
    service_dict = _load_yaml_dict(config_path)
    pool_overrides = service_dict.pop("pool", None)
    _apply_pool_overrides(store_dict, pool_overrides, args.service)

    store = Store.from_dict(store_dict)

    try:
        async with store:
            job = await build_job(args, store)
            service = entry.cls.from_dict(service_dict, store=store, job=job)
            return await run_service(args.service, service, once=args.once)
    except ChainsyncError as e:
        logger.error("startup_failed", error=str(e), error_type=type(e).__name__)
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
