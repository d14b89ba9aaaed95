"""Audit event ingestion with tiered persistence.

Each event goes to the ledger delegate when one is configured. Otherwise,
or when the delegate fails, it is chained locally: the session's latest
entry is looked up, the new hash computed and the entry inserted. If the
store is down the computed hash is still returned, marked
``local-unpersisted``. Nothing below the ingestion boundary raises to the
caller except per-event validation, which is reported in the result.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from auditchain_api.exceptions import (
    ChainConflict,
    PersistenceUnavailable,
    RemoteUnavailable,
    ValidationError,
)
from auditchain_api.ledger.chain import GENESIS, ChainEntry, ChainService, canonical_timestamp, parse_timestamp
from auditchain_api.ledger.delegate import LedgerDelegate
from auditchain_api.ledger.locks import LocalSessionLocks, SessionLocks
from auditchain_api.ledger.store import AuditStore
from auditchain_api.schemas import (
    SOURCE_LOCAL,
    SOURCE_LOCAL_UNPERSISTED,
    SOURCE_REJECTED,
    SOURCE_REMOTE,
    AuditEvent,
    IngestResponse,
    IngestResult,
)
from auditchain_api.utils.metrics import (
    chain_conflicts,
    delegate_failures,
    events_ingested,
    events_rejected,
    persist_failures,
)

logger = logging.getLogger(__name__)


def _describe(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "event"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


class IngestionService:
    """Turns batches of audit events into chain entries."""

    def __init__(
        self,
        store: AuditStore,
        delegate: Optional[LedgerDelegate] = None,
        locks: Optional[SessionLocks] = None,
        conflict_retries: int = 3,
    ):
        """Initialize with a store handle constructed once at process start."""
        self.store = store
        self.delegate = delegate
        self.locks = locks or LocalSessionLocks()
        self.conflict_retries = conflict_retries

    def ingest(self, events: Iterable[dict[str, Any]]) -> IngestResponse:
        """Process a batch; events are handled independently of each other."""
        events = list(events)
        if not events:
            return IngestResponse(success=True, logged=0)

        results = [self.process_event(raw) for raw in events]
        logged = sum(1 for result in results if result.source != SOURCE_REJECTED)
        return IngestResponse(success=True, logged=logged, results=results)

    def process_event(self, raw: Any) -> IngestResult:
        """Run one raw event through validation and the persistence tiers."""
        try:
            event = self.validate(raw)
        except ValidationError as e:
            events_rejected.inc()
            event_type = raw.get("eventType") if isinstance(raw, dict) else None
            logger.info(f"Rejected audit event {event_type!r}: {e}")
            return IngestResult(
                event_type=event_type if isinstance(event_type, str) else None,
                source=SOURCE_REJECTED,
                error=str(e),
            )

        return self._dispatch(event)

    def log_action(
        self,
        event_type: str,
        session_id: str,
        event_data: Optional[dict[str, Any]] = None,
        user_id: Optional[str] = None,
        iep_id: Optional[str] = None,
    ) -> tuple[IngestResult, str]:
        """Log a single action stamped with the server clock.

        Returns the result and the canonical timestamp that was hashed.
        Raises ValidationError for malformed input.
        """
        timestamp = canonical_timestamp(datetime.now(timezone.utc))
        event = self.validate(
            {
                "eventType": event_type,
                "sessionId": session_id,
                "metadata": event_data or {},
                "timestamp": timestamp,
                "userId": user_id,
                "iepId": iep_id,
            }
        )
        return self._dispatch(event), timestamp

    def verify_session(self, session_id: str) -> tuple[bool, int, Optional[str]]:
        """Verify a session's stored chain. Raises PersistenceUnavailable."""
        entries = self.store.list_session(session_id)
        valid, error = ChainService.verify_chain(entries)
        return valid, len(entries), error

    @staticmethod
    def validate(raw: Any) -> AuditEvent:
        """Parse a raw event, stamping the server time when it has none."""
        if not isinstance(raw, dict):
            raise ValidationError("event must be an object")
        try:
            event = AuditEvent.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(_describe(e)) from e
        if event.timestamp is None:
            event.timestamp = datetime.now(timezone.utc)
        return event

    def _dispatch(self, event: AuditEvent) -> IngestResult:
        result = self._forward(event)
        if result is None:
            result = self._chain_locally(event)
        events_ingested.labels(source=result.source).inc()
        return result

    # Tier 1: ledger delegate

    def _forward(self, event: AuditEvent) -> Optional[IngestResult]:
        if self.delegate is None:
            return None
        try:
            remote_hash = self.delegate.log(
                event.session_id,
                event.event_type,
                event.hashed_event_data(),
                canonical_timestamp(event.timestamp),
            )
        except RemoteUnavailable as e:
            delegate_failures.inc()
            logger.warning(f"Ledger delegate failed for session {event.session_id}, chaining locally: {e}")
            return None
        return IngestResult(event_type=event.event_type, hash=remote_hash, source=SOURCE_REMOTE)

    # Tiers 2-4: local lookup, compute, persist

    def _chain_locally(self, event: AuditEvent) -> IngestResult:
        entry = None
        for attempt in range(self.conflict_retries + 1):
            with self._session_lock(event.session_id):
                entry = self._build_entry(event, *self._resolve_previous(event.session_id))
                try:
                    self.store.insert(entry)
                except ChainConflict as e:
                    chain_conflicts.inc()
                    logger.warning(f"Chain conflict on attempt {attempt + 1}: {e}")
                    continue
                except PersistenceUnavailable as e:
                    persist_failures.labels(operation="insert").inc()
                    logger.warning(
                        f"Audit store unavailable, returning unpersisted hash "
                        f"{entry.current_hash} for session {event.session_id}: {e}"
                    )
                    return self._result(entry, SOURCE_LOCAL_UNPERSISTED)
            return self._result(entry, SOURCE_LOCAL)

        logger.warning(
            f"Gave up persisting event for session {event.session_id} after "
            f"{self.conflict_retries + 1} conflicting attempts"
        )
        return self._result(entry, SOURCE_LOCAL_UNPERSISTED)

    @contextmanager
    def _session_lock(self, session_id: str):
        try:
            handle = self.locks.acquire(session_id)
        except PersistenceUnavailable as e:
            # Proceed unserialized; the sequence constraint still rejects forks
            logger.warning(f"Writing session {session_id} without lock: {e}")
            yield
            return
        try:
            yield
        finally:
            self.locks.release(session_id, handle)

    def _resolve_previous(self, session_id: str) -> tuple[str, int]:
        try:
            latest = self.store.latest_entry(session_id)
        except PersistenceUnavailable as e:
            persist_failures.labels(operation="lookup").inc()
            logger.warning(f"Previous-hash lookup failed for session {session_id}, using genesis: {e}")
            return GENESIS, 1
        if latest is None:
            return GENESIS, 1
        return latest.current_hash, latest.sequence + 1

    @staticmethod
    def _build_entry(event: AuditEvent, previous_hash: str, sequence: int) -> ChainEntry:
        timestamp = parse_timestamp(event.timestamp)
        current_hash = ChainService.compute_hash(
            event.event_type,
            event.hashed_event_data(),
            timestamp,
            previous_hash,
        )
        return ChainEntry(
            session_id=event.session_id,
            event_type=event.event_type,
            event_data=dict(event.metadata or {}),
            timestamp=timestamp,
            previous_hash=previous_hash,
            current_hash=current_hash,
            sequence=sequence,
            user_id=event.user_id,
            iep_id=event.iep_id,
        )

    @staticmethod
    def _result(entry: ChainEntry, source: str) -> IngestResult:
        return IngestResult(event_type=entry.event_type, hash=entry.current_hash, source=source)
