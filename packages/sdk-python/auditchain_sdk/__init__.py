"""Audit chain Python SDK."""

__version__ = "0.1.0"

from auditchain_sdk.batcher import EventBatcher, SessionMetrics  # noqa: E402
from auditchain_sdk.client import AuditClient  # noqa: E402
from auditchain_sdk.exceptions import TransportFailure  # noqa: E402
from auditchain_sdk.redaction import DEFAULT_PII_KEYS, redact  # noqa: E402

__all__ = [
    "AuditClient",
    "EventBatcher",
    "SessionMetrics",
    "TransportFailure",
    "DEFAULT_PII_KEYS",
    "redact",
]
