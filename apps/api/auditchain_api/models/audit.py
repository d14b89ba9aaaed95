"""Audit log models."""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, Column, DateTime, Integer, String, UniqueConstraint

from auditchain_api.db.base import Base


class AuditLogEntry(Base):
    """Append-only, hash-chained audit log entry for one session."""

    __tablename__ = "audit_log"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_audit_log_session_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(255), nullable=False, index=True)
    sequence = Column(BigInteger, nullable=False)  # 1 for the genesis-linked entry
    user_id = Column(String(255), nullable=True, index=True)
    iep_id = Column(String(255), nullable=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    event_data = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime, nullable=False, index=True)
    previous_hash = Column(String(64), nullable=False)
    current_hash = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
