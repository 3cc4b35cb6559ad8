from fastapi import HTTPException, status

from kmm.reconcile.audit import AuditLogger
from kmm.reconcile.config import settings
from kmm.reconcile.directory import FileClusterDirectory
from kmm.reconcile.keycloak import KeycloakGateway
from kmm.reconcile.service import ReconciliationService


_directory: FileClusterDirectory | None = None
_service: ReconciliationService | None = None
_audit_logger: AuditLogger | None = None


async def init_deps():

    global _directory, _service, _audit_logger

    _directory = FileClusterDirectory(settings.inventory_path)

    _audit_logger = AuditLogger(
        enabled=settings.audit_enabled,
        log_values=settings.audit_log_values,
    )

    gateway = KeycloakGateway(_directory, timeout=settings.request_timeout)
    _service = ReconciliationService(
        source=gateway,
        syncer=gateway,
        tags=_directory,
        directory=_directory,
        audit=_audit_logger,
    )


def get_directory() -> FileClusterDirectory:
    if _directory is None:
        raise RuntimeError("Cluster directory not initialized")
    return _directory


def get_service() -> ReconciliationService:
    if _service is None:
        raise RuntimeError("Reconciliation service not initialized")
    return _service


def get_audit_logger() -> AuditLogger:
    if _audit_logger is None:
        raise RuntimeError("Audit logger not initialized")
    return _audit_logger


def raise_404(detail: str = "Not found"):
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
