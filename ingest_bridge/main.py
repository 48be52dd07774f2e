"""CLI entry point del bridge MQTT → TimescaleDB.

Comandos:
    start   Ejecuta el pipeline hasta recibir SIGINT/SIGTERM
    config  Emite un archivo de configuración de ejemplo
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from sqlalchemy.exc import ArgumentError

from common.config import Settings, load_settings, write_sample_config
from common.db import check_connection, get_engine

from .core.pipeline.coordinator import BridgePipeline
from .core.transport.mqtt_client import ConnectionManager
from .errors import ConfigurationError
from .infrastructure.persistence.postgres_setup import ensure_schema
from .infrastructure.persistence.retry import RetryConfig
from .infrastructure.persistence.timescale import TimescaleStorage

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2


def _configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="telemetry-bridge",
        description="MQTT → TimescaleDB telemetry bridge",
    )
    sub = p.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="run the ingestion pipeline")
    start.add_argument("-c", "--config", help="TOML configuration file")
    start.add_argument("--host", help="MQTT broker host")
    start.add_argument("--port", type=int, help="MQTT broker port")
    start.add_argument("--client-id", help="MQTT client identifier")
    start.add_argument("--qos", type=int, choices=(0, 1, 2), help="subscription QoS")
    start.add_argument(
        "--topic",
        action="append",
        dest="topics",
        help="topic filter to subscribe to (repeatable; replaces configured topics)",
    )
    start.add_argument("--database-url", help="SQLAlchemy database URL")
    start.add_argument("--workers", type=int, help="persistence worker threads")
    start.add_argument("--queue-size", type=int, help="max messages waiting for a worker")
    start.add_argument(
        "--init-schema",
        action="store_true",
        help="create tables and hypertables before starting",
    )

    config = sub.add_parser("config", help="emit a sample configuration file")
    config.add_argument("-o", "--output", help="write to this file instead of stdout")

    return p


def _overrides_from_args(args: argparse.Namespace) -> dict:
    return {
        "mqtt": {
            "host": args.host,
            "port": args.port,
            "client_id": args.client_id,
            "qos": args.qos,
            "topics": args.topics,
        },
        "database": {"url": args.database_url},
        "pipeline": {"workers": args.workers, "queue_size": args.queue_size},
    }


def build_connection(settings: Settings) -> ConnectionManager:
    mqtt_cfg = settings.mqtt
    return ConnectionManager(
        broker_host=mqtt_cfg.host,
        broker_port=mqtt_cfg.port,
        client_id=mqtt_cfg.client_id,
        topics=mqtt_cfg.topics,
        qos=mqtt_cfg.qos,
        username=mqtt_cfg.username,
        password=mqtt_cfg.password,
        keepalive=mqtt_cfg.keepalive,
        reconnect_backoff=mqtt_cfg.reconnect_backoff_seconds,
    )


def cmd_start(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(args.config, _overrides_from_args(args))
        engine = get_engine(settings.database.url)
    except ConfigurationError as e:
        logger.error("[CONFIG] %s", e)
        return EXIT_CONFIG_ERROR
    except ArgumentError as e:
        logger.error("[CONFIG] Invalid database url: %s", e)
        return EXIT_CONFIG_ERROR

    if args.init_schema:
        try:
            ensure_schema(engine)
        except Exception as e:
            logger.error("[DB] Schema initialization failed: %s", e)
            engine.dispose()
            return EXIT_RUNTIME_ERROR

    # La BD caída no impide arrancar: las escrituras fallidas se descartan y loguean
    check_connection(engine)

    persistence = settings.persistence
    storage = TimescaleStorage(
        engine,
        retry=RetryConfig.from_retries(persistence.retry_attempts, persistence.retry_base_delay),
    )
    pipeline = BridgePipeline(
        build_connection(settings),
        storage,
        workers=settings.pipeline.workers,
        queue_size=settings.pipeline.queue_size,
        failure_alert_threshold=persistence.failure_alert_threshold,
    )
    pipeline.install_signal_handlers()

    logger.info("Telemetry bridge started")
    try:
        pipeline.run()
    finally:
        engine.dispose()

    logger.info("Telemetry bridge stopped")
    return EXIT_OK


def cmd_config(args: argparse.Namespace) -> int:
    content = write_sample_config(args.output)
    if args.output:
        logger.info("Sample configuration written to %s", args.output)
    else:
        sys.stdout.write(content)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    _configure_logging()
    args = build_parser().parse_args(argv)

    if args.command == "start":
        return cmd_start(args)
    return cmd_config(args)


if __name__ == "__main__":
    sys.exit(main())
