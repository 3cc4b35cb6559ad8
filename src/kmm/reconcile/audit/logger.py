"""Structured audit logging for realm mutations."""

import logging
from typing import Any

import structlog

from kmm.reconcile.models.tags import TagOperation


def _stdlib_level(log_level: str | int) -> int:
    if isinstance(log_level, int):
        return log_level
    level = logging.getLevelName(log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def _audit_processors(json_format: bool) -> list[Any]:
    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def configure_audit_logging(
    *,
    log_level: str | int,
    json_format: bool,
    service_name: str,
) -> None:
    """Route audit events through structlog on top of stdlib logging.

    Every event carries the service name, bound once as context.
    """
    level = _stdlib_level(log_level)
    logging.basicConfig(level=level)

    structlog.configure(
        processors=_audit_processors(json_format),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)


class AuditLogger:
    """Audit trail of entity syncs and tag batches."""

    def __init__(
        self,
        enabled: bool = True,
        log_values: bool = False,
        logger: Any = None,
    ):
        """Initialize audit logger.

        Args:
            enabled: Whether audit logging is enabled
            log_values: Whether to log entity definitions (may be sensitive)
            logger: Optional custom logger
        """
        self._enabled = enabled
        self._log_values = log_values
        self._logger = logger or structlog.get_logger("audit")

    def log_sync(
        self,
        source_id: int,
        destination_id: int,
        category: str,
        key: str,
        success: bool,
        error: str | None = None,
        value: dict[str, Any] | None = None,
    ) -> None:
        """Log one entity sync attempt."""
        if not self._enabled:
            return

        log_data: dict[str, Any] = {
            "event": "entity_sync",
            "source_cluster": source_id,
            "destination_cluster": destination_id,
            "category": category,
            "key": key,
            "success": success,
        }
        if error:
            log_data["error"] = error
        if self._log_values and value is not None:
            log_data["value"] = value

        if success:
            self._logger.info(**log_data)
        else:
            self._logger.warning(**log_data)

    def log_tag_batch(
        self,
        action: str,
        operation: TagOperation,
        success: bool,
        error: str | None = None,
    ) -> None:
        """Log one batched tag assign/remove call."""
        if not self._enabled:
            return

        log_data: dict[str, Any] = {
            "event": "tag_batch",
            "action": action,
            "cluster_ids": sorted(operation.cluster_ids),
            "tag_ids": sorted(operation.tag_ids),
            "success": success,
        }
        if error:
            log_data["error"] = error

        if success:
            self._logger.info(**log_data)
        else:
            self._logger.warning(**log_data)

    def log_fetch_degraded(
        self,
        cluster_id: int,
        category: str,
        error: str,
    ) -> None:
        """Log a category fetch that fell back to an empty snapshot."""
        if not self._enabled:
            return

        self._logger.warning(
            event="fetch_degraded",
            cluster=cluster_id,
            category=category,
            error=error,
        )

    def log_error(
        self,
        operation: str,
        error: str,
        cluster_id: int | None = None,
    ) -> None:
        """Log an operation that failed as a whole."""
        if not self._enabled:
            return

        log_data: dict[str, Any] = {
            "event": "reconcile_error",
            "operation": operation,
            "error": error,
        }
        if cluster_id is not None:
            log_data["cluster"] = cluster_id

        self._logger.error(**log_data)
