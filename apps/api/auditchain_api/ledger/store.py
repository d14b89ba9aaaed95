"""Durable, append-only storage for chain entries."""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from auditchain_api.exceptions import ChainConflict, PersistenceUnavailable
from auditchain_api.ledger.chain import ChainEntry, parse_timestamp
from auditchain_api.models import AuditLogEntry

logger = logging.getLogger(__name__)


class AuditStore(ABC):
    """Ordered collection of chain entries keyed by session.

    Entries are only ever inserted. An insert whose (session_id, sequence)
    is already taken raises ChainConflict; any other storage failure
    raises PersistenceUnavailable.
    """

    @abstractmethod
    def latest_entry(self, session_id: str) -> Optional[ChainEntry]:
        """Return the most recent entry of a session, or None."""

    @abstractmethod
    def insert(self, entry: ChainEntry) -> ChainEntry:
        """Append an entry."""

    @abstractmethod
    def list_session(self, session_id: str) -> list[ChainEntry]:
        """Return a session's entries in chain order."""

    def ping(self) -> bool:
        """Check the store is reachable."""
        return True


def _to_entry(row: AuditLogEntry) -> ChainEntry:
    return ChainEntry(
        session_id=row.session_id,
        event_type=row.event_type,
        event_data=row.event_data or {},
        timestamp=parse_timestamp(row.timestamp),
        previous_hash=row.previous_hash,
        current_hash=row.current_hash,
        sequence=row.sequence,
        user_id=row.user_id,
        iep_id=row.iep_id,
    )


class SQLAlchemyAuditStore(AuditStore):
    """Audit store backed by the ``audit_log`` table."""

    def __init__(self, session_factory: sessionmaker):
        """Initialize store with a session factory created at process start."""
        self.session_factory = session_factory

    def latest_entry(self, session_id: str) -> Optional[ChainEntry]:
        try:
            with self.session_factory() as db:
                row = (
                    db.query(AuditLogEntry)
                    .filter(AuditLogEntry.session_id == session_id)
                    .order_by(AuditLogEntry.sequence.desc())
                    .first()
                )
                return _to_entry(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceUnavailable(f"lookup failed for session {session_id}: {e}") from e

    def insert(self, entry: ChainEntry) -> ChainEntry:
        row = AuditLogEntry(
            session_id=entry.session_id,
            sequence=entry.sequence,
            user_id=entry.user_id,
            iep_id=entry.iep_id,
            event_type=entry.event_type,
            event_data=entry.event_data,
            # Stored as naive UTC
            timestamp=parse_timestamp(entry.timestamp).replace(tzinfo=None),
            previous_hash=entry.previous_hash,
            current_hash=entry.current_hash,
        )
        try:
            with self.session_factory() as db:
                try:
                    db.add(row)
                    db.commit()
                except IntegrityError as e:
                    db.rollback()
                    raise ChainConflict(
                        f"sequence {entry.sequence} already taken in session {entry.session_id}"
                    ) from e
        except ChainConflict:
            raise
        except SQLAlchemyError as e:
            raise PersistenceUnavailable(f"insert failed for session {entry.session_id}: {e}") from e
        return entry

    def list_session(self, session_id: str) -> list[ChainEntry]:
        try:
            with self.session_factory() as db:
                rows = (
                    db.query(AuditLogEntry)
                    .filter(AuditLogEntry.session_id == session_id)
                    .order_by(AuditLogEntry.sequence.asc())
                    .all()
                )
                return [_to_entry(row) for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceUnavailable(f"listing failed for session {session_id}: {e}") from e

    def ping(self) -> bool:
        try:
            with self.session_factory() as db:
                db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Audit store check failed: {e}")
            return False


class InMemoryAuditStore(AuditStore):
    """In-memory audit store for tests and local development.

    Enforces the same (session_id, sequence) uniqueness as the table and
    hands out copies, so stored entries only change through ``_entries``.
    """

    def __init__(self) -> None:
        self._entries: dict[str, list[ChainEntry]] = {}
        self._lock = threading.Lock()

    def latest_entry(self, session_id: str) -> Optional[ChainEntry]:
        with self._lock:
            entries = self._entries.get(session_id)
            return copy.deepcopy(entries[-1]) if entries else None

    def insert(self, entry: ChainEntry) -> ChainEntry:
        with self._lock:
            entries = self._entries.setdefault(entry.session_id, [])
            if any(e.sequence == entry.sequence for e in entries):
                raise ChainConflict(
                    f"sequence {entry.sequence} already taken in session {entry.session_id}"
                )
            entries.append(copy.deepcopy(entry))
            entries.sort(key=lambda e: e.sequence)
        return entry

    def list_session(self, session_id: str) -> list[ChainEntry]:
        with self._lock:
            return copy.deepcopy(self._entries.get(session_id, []))
