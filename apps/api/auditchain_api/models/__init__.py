"""Database models - import all models here for Alembic discovery."""

from auditchain_api.models.audit import AuditLogEntry

__all__ = [
    "AuditLogEntry",
]
