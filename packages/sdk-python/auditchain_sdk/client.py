"""Audit chain API client."""

import json
import logging
from typing import Any, Optional

import requests

from auditchain_sdk.exceptions import TransportFailure

logger = logging.getLogger(__name__)


class AuditClient:
    """Client for the audit chain API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        beacon_read_timeout: float = 0.05,
    ):
        """Initialize client."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.beacon_read_timeout = beacon_read_timeout
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.session.headers.update({"x-api-key": api_key})

    @property
    def events_url(self) -> str:
        return f"{self.base_url}/v1/audit/events"

    def send_events(self, events: list[dict[str, Any]]) -> dict:
        """Deliver a batch and return the ingestion response.

        Raises TransportFailure when the batch was not accepted.
        """
        try:
            response = self.session.post(self.events_url, json={"events": events}, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TransportFailure(f"could not deliver {len(events)} audit events: {e}") from e

        if not isinstance(body, dict) or not body.get("success"):
            raise TransportFailure(f"audit endpoint did not accept batch: {body!r}")
        return body

    def send_events_nowait(self, events: list[dict[str, Any]]) -> None:
        """Hand a batch to the network without waiting for the response.

        The request is written in full before this returns; reading the
        response is cut off by ``beacon_read_timeout``. Failures are logged,
        never raised.
        """
        body = json.dumps({"events": events})
        try:
            requests.post(
                self.events_url,
                data=body,
                headers=dict(self.session.headers),
                timeout=(self.timeout, self.beacon_read_timeout),
            )
        except requests.ReadTimeout:
            pass  # sent, unconfirmed
        except requests.RequestException as e:
            logger.warning(f"Teardown delivery of {len(events)} audit events failed: {e}")

    def log_action(
        self,
        event_type: str,
        session_id: str,
        event_data: Optional[dict] = None,
        user_id: Optional[str] = None,
        iep_id: Optional[str] = None,
    ) -> dict:
        """Log a single action stamped with the server clock."""
        url = f"{self.base_url}/v1/audit/action"
        payload = {
            "eventType": event_type,
            "eventData": event_data or {},
            "sessionId": session_id,
        }
        if user_id:
            payload["userId"] = user_id
        if iep_id:
            payload["iepId"] = iep_id
        response = self.session.post(url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def verify_session(self, session_id: str) -> dict:
        """Verify a session's stored chain."""
        url = f"{self.base_url}/v1/audit/sessions/{session_id}/verify"
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def close(self) -> None:
        self.session.close()
