"""
Structured logging configuration using structlog.

Events are JSON in production and rendered for the console otherwise. Every
event emitted while a lifecycle operation runs carries the engine and name
of the cluster it works on, through ``cluster_context``.
"""
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, List, Optional, Tuple

import structlog
from structlog.types import EventDict, Processor

from dbaas_controller.config.settings import settings

# (engine, cluster name) of the operation running in the current task
_current_cluster: ContextVar[Optional[Tuple[str, str]]] = ContextVar("current_cluster", default=None)

QUIET_LOGGERS = ("uvicorn.access", "kubernetes_asyncio", "httpx", "httpcore", "asyncio")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application identity and the watched namespace to log events."""
    event_dict["app"] = settings.app_name
    event_dict["version"] = settings.app_version
    event_dict["environment"] = settings.environment
    event_dict.setdefault("namespace", settings.k8s_namespace)
    return event_dict


def add_cluster_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag events with the cluster the current operation works on; explicit keys win."""
    current = _current_cluster.get()
    if current is not None:
        engine, cluster = current
        event_dict.setdefault("engine", engine)
        event_dict.setdefault("cluster", cluster)
    return event_dict


def add_severity_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    if "level" in event_dict:
        event_dict["severity"] = event_dict["level"].upper()
    return event_dict


@contextmanager
def cluster_context(engine: str, cluster: str) -> Iterator[None]:
    """Attach a cluster to every event logged inside the block, restoring the outer one after."""
    token = _current_cluster.set((engine, cluster))
    try:
        yield
    finally:
        _current_cluster.reset(token)


def shared_processors() -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        add_cluster_context,
        add_severity_level,
    ]


def configure_logging() -> None:
    """Configure structlog on top of the standard library logging module."""
    renderer: Processor
    if settings.is_production:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors() + [structlog.processors.format_exc_info, renderer],  # type: ignore
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
