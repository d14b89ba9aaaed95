"""External ledger delegate client."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from auditchain_api.exceptions import RemoteUnavailable
from auditchain_api.settings import Settings

logger = logging.getLogger(__name__)


class LedgerDelegate(ABC):
    """An external logging service that chains events itself."""

    @abstractmethod
    def log(
        self,
        session_id: str,
        event_type: str,
        event_data: dict[str, Any],
        timestamp: str,
    ) -> str:
        """Forward one event and return the hash the delegate assigned.

        Raises RemoteUnavailable on any failure.
        """

    def close(self) -> None:
        """Release any held connections."""


class HttpLedgerDelegate(LedgerDelegate):
    """Ledger delegate reached with a JSON POST."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        """Initialize delegate; ``client`` is injectable for tests."""
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def log(
        self,
        session_id: str,
        event_type: str,
        event_data: dict[str, Any],
        timestamp: str,
    ) -> str:
        payload = {
            "action": "log",
            "sessionId": session_id,
            "eventType": event_type,
            "eventData": event_data,
            "timestamp": timestamp,
        }
        try:
            response = self.client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"ledger delegate unreachable: {e}") from e

        if not 200 <= response.status_code < 300:
            raise RemoteUnavailable(f"ledger delegate returned {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteUnavailable("ledger delegate returned malformed JSON") from e

        remote_hash = None
        if isinstance(body, dict):
            remote_hash = body.get("hash") or body.get("currentHash")
        if not isinstance(remote_hash, str) or not remote_hash:
            raise RemoteUnavailable("ledger delegate response carried no hash")
        return remote_hash

    def close(self) -> None:
        self.client.close()


def build_ledger_delegate(settings: Settings) -> Optional[LedgerDelegate]:
    """Build the configured delegate, or None when no URL is set."""
    if not settings.ledger_delegate_url:
        return None
    logger.info("Ledger delegate configured")
    return HttpLedgerDelegate(settings.ledger_delegate_url, timeout=settings.ledger_timeout_seconds)
