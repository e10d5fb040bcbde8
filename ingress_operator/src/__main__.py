from __future__ import annotations

import json
import logging
import os
import re
import signal
import sys
import threading

from ingress_operator.src.config import ConfigError, load_config
from ingress_operator.src.dispatcher import EventDispatcher, build_watch_sources
from ingress_operator.src.errors import PlatformError
from ingress_operator.src.health import start_health_server
from ingress_operator.src.installconfig import load_install_config
from ingress_operator.src.kube import PlatformClient, build_clients, load_kube_configuration
from ingress_operator.src.manifests import ManifestFactory
from ingress_operator.src.metrics import METRICS
from ingress_operator.src.reconciler import Reconciler

RUNTIME_VERSION = "0.1.0"
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
)


def redact_sensitive_text(value: str) -> str:
    for pattern, replacement in _REDACTION_RULES:
        value = pattern.sub(replacement, value)
    return value


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging(level_name: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level_name.upper(), logging.INFO))


def main() -> int:
    """Operator entrypoint: configure, ensure the default ingress, and run the dispatcher."""
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    try:
        config = load_config()
    except ConfigError:
        logger.exception("Invalid operator configuration")
        return 2

    load_kube_configuration()
    clients = build_clients()
    platform = PlatformClient(clients)
    factory = ManifestFactory(
        router_namespace=config.router_namespace,
        router_image=config.router_image,
    )
    reconciler = Reconciler(
        platform=platform,
        factory=factory,
        namespace=config.watch_namespace,
        workers=config.reconcile_workers,
    )

    if config.create_default_cluster_ingress:
        try:
            install_config = load_install_config(
                clients.core,
                namespace=config.install_config_namespace,
                name=config.install_config_name,
            )
            reconciler.ensure_default_cluster_ingress(install_config)
        except (ConfigError, PlatformError):
            logger.exception("Couldn't ensure default clusteringress")
            return 1

    dispatcher = EventDispatcher(
        reconciler=reconciler,
        sources=build_watch_sources(
            clients,
            watch_namespace=config.watch_namespace,
            router_namespace=config.router_namespace,
        ),
        resync_seconds=config.resync_seconds,
    )
    health_server = start_health_server(ready=dispatcher.ready, port=config.health_port)

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    logger.info(
        "Watching clusteringresses in %s; routers in %s",
        config.watch_namespace,
        config.router_namespace,
    )
    dispatcher.run_forever(shutdown_event=shutdown_event)

    health_server.shutdown()
    logger.info("Operator stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
