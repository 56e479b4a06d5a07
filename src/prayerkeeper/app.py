from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
import signal
from threading import Event
from typing import Iterable, Optional

from prayerkeeper.config import ConfigError, ConfigLoader, ServiceConfig, load_engine
from prayerkeeper.kv_store import StoreError, open_store
from prayerkeeper.logging_utils import LoggerFactory
from prayerkeeper.startup import services_from_config


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config_path = Path(args.config) if args.config else None
        config = ConfigLoader(config_path=config_path).load()
        engine = load_engine(config.engine.target)
    except ConfigError as exc:
        LoggerFactory.create("prayerkeeper")
        logging.getLogger("prayerkeeper").error("Config error: %s", exc)
        return 2

    log_path = os.getenv("PRAYERKEEPER_LOG_PATH") or config.logging.file_path
    LoggerFactory.create("prayerkeeper", log_file=log_path, level=config.logging.level)
    logger = logging.getLogger("prayerkeeper")
    logger.info("Config summary: %s", _config_summary(config))

    # Import APScheduler only after config is valid to avoid noisy failures.
    from apscheduler.schedulers.background import BackgroundScheduler

    scheduler = BackgroundScheduler()
    # Started paused so jobs can be registered before any of them run.
    scheduler.start(paused=True)
    try:
        with open_store(Path(config.storage.path)) as store:
            services = services_from_config(
                config, store=store, scheduler=scheduler, engine=engine
            )

            if args.clear_cache:
                services.cache.clear()
                return 0

            services.rescheduler.initialize()
            if args.dry_run:
                # Dry-run should not block; it just validates config and wiring.
                logger.info(
                    "Dry-run: registered jobs %s",
                    [job.id for job in scheduler.get_jobs()],
                )
                return 0

            services.rescheduler.force_reschedule_now()
            scheduler.resume()
            logger.info("prayerkeeper running; waiting for scheduled jobs")
            _wait_until_stopped(Event())
    except StoreError as exc:
        logger.error("Store error: %s", exc)
        return 1
    finally:
        scheduler.shutdown(wait=False)
    return 0


def _config_summary(config: ServiceConfig) -> dict:
    location = None
    if config.location is not None:
        location = {
            "latitude": config.location.latitude,
            "longitude": config.location.longitude,
        }
    return {
        "storage": {"path": config.storage.path},
        "engine": {"target": config.engine.target},
        "location": location,
        "jobs": {"prefetch_days": config.jobs.prefetch_days},
        "delivery": {
            "command": list(config.delivery.command),
            "timeout_seconds": config.delivery.timeout_seconds,
        },
        "logging": {
            "file_path": config.logging.file_path,
            "level": config.logging.level,
        },
    }


def _wait_until_stopped(stop: Event) -> None:
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        stop.wait()
    except KeyboardInterrupt:
        logging.getLogger("prayerkeeper").info("Interrupted; shutting down")


def _parse_args(argv: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="prayerkeeper notification daemon")
    parser.add_argument("--config", help="Path to config.yml")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate config and job wiring without running jobs",
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Remove every cached prayer-time entry and exit",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    raise SystemExit(main())
