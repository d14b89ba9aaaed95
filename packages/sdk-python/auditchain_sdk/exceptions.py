"""SDK exceptions."""


class AuditChainClientError(Exception):
    """Base exception for SDK errors."""


class TransportFailure(AuditChainClientError):
    """Raised when a batch could not be delivered to the audit endpoint."""
