"""Hash chain construction and verification.

Every entry's hash covers its event type, event data, timestamp and the
previous entry's hash, so rewriting any stored entry breaks either its own
hash or the link from the entry after it. The chain is keyless: it detects
tampering, it does not prove authorship.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

GENESIS = "genesis"

Timestamp = Union[datetime, str]


def parse_timestamp(value: Timestamp) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def canonical_timestamp(value: Timestamp) -> str:
    """Render a timestamp as UTC with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""
    ts = parse_timestamp(value)
    return (
        f"{ts.year:04d}-{ts.month:02d}-{ts.day:02d}T"
        f"{ts.hour:02d}:{ts.minute:02d}:{ts.second:02d}.{ts.microsecond // 1000:03d}Z"
    )


@dataclass
class ChainEntry:
    """Persisted, append-only record of one event in a session's chain."""

    session_id: str
    event_type: str
    event_data: dict[str, Any]
    timestamp: datetime
    previous_hash: str
    current_hash: str
    sequence: int = 1
    user_id: Optional[str] = None
    iep_id: Optional[str] = None

    def hashed_event_data(self) -> dict[str, Any]:
        """Stored event data merged with the correlation fields that were hashed with it."""
        data = dict(self.event_data or {})
        if self.user_id is not None:
            data["userId"] = self.user_id
        if self.iep_id is not None:
            data["iepId"] = self.iep_id
        return data

    def to_record(self) -> dict[str, Any]:
        """Store record shape, camelCase like the wire format."""
        return {
            "sessionId": self.session_id,
            "sequence": self.sequence,
            "userId": self.user_id,
            "iepId": self.iep_id,
            "eventType": self.event_type,
            "eventData": self.event_data,
            "timestamp": canonical_timestamp(self.timestamp),
            "previousHash": self.previous_hash,
            "currentHash": self.current_hash,
        }


class ChainService:
    """Deterministic hash chaining. Holds no state and performs no I/O."""

    GENESIS = GENESIS

    @staticmethod
    def canonicalize(
        event_type: str,
        event_data: dict[str, Any],
        timestamp: Timestamp,
        previous_hash: str,
    ) -> bytes:
        """Serialize the hashed fields into one unambiguous byte sequence.

        Keys are sorted at every level and separators are fixed, so two
        mappings with the same content always serialize identically.
        Non-finite floats raise ValueError.
        """
        payload = {
            "eventType": event_type,
            "eventData": event_data or {},
            "timestamp": canonical_timestamp(timestamp),
            "previousHash": previous_hash,
        }
        return json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")

    @classmethod
    def compute_hash(
        cls,
        event_type: str,
        event_data: dict[str, Any],
        timestamp: Timestamp,
        previous_hash: str,
    ) -> str:
        """Compute the hex SHA-256 of the canonical form."""
        return hashlib.sha256(
            cls.canonicalize(event_type, event_data, timestamp, previous_hash)
        ).hexdigest()

    @classmethod
    def verify(cls, entry: ChainEntry) -> bool:
        """Recompute an entry's hash and compare it to the stored one."""
        try:
            expected = cls.compute_hash(
                entry.event_type,
                entry.hashed_event_data(),
                entry.timestamp,
                entry.previous_hash,
            )
        except (TypeError, ValueError):
            return False
        return expected == entry.current_hash

    @classmethod
    def verify_chain(cls, entries: Iterable[ChainEntry]) -> tuple[bool, Optional[str]]:
        """Verify a session's entries in chain order.

        Returns (True, None) for an intact chain, otherwise (False, reason)
        naming the first broken entry.
        """
        previous_hash = GENESIS
        for index, entry in enumerate(entries):
            if entry.previous_hash != previous_hash:
                return False, (
                    f"entry {index} (sequence {entry.sequence}) links to "
                    f"{entry.previous_hash!r}, expected {previous_hash!r}"
                )
            if not cls.verify(entry):
                return False, f"entry {index} (sequence {entry.sequence}) hash mismatch"
            previous_hash = entry.current_hash
        return True, None
