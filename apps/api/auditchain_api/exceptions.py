"""Audit chain exception hierarchy."""


class AuditChainError(Exception):
    """Base exception for all audit chain errors."""


class ValidationError(AuditChainError):
    """Raised when an audit event is missing a required field or is malformed."""


class RemoteUnavailable(AuditChainError):
    """Raised when the ledger delegate is unreachable or returns a failure."""


class PersistenceUnavailable(AuditChainError):
    """Raised when the audit store cannot be read or written."""


class ChainConflict(PersistenceUnavailable):
    """Raised when a conditional chain write lost a race with another writer."""
