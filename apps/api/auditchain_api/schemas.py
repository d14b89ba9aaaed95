"""Wire models for the audit endpoints."""

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auditchain_api.ledger.chain import parse_timestamp

SOURCE_REMOTE = "remote"
SOURCE_LOCAL = "local"
SOURCE_LOCAL_UNPERSISTED = "local-unpersisted"
SOURCE_REJECTED = "rejected"


class CamelModel(BaseModel):
    """Base model speaking camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuditEvent(CamelModel):
    """One user or system action as sent by a client."""

    event_type: str = Field(..., min_length=1, description="Caller-defined tag, e.g. UPLOAD")
    metadata: Optional[dict[str, Any]] = Field(default_factory=dict, description="Redacted side data")
    timestamp: Optional[datetime] = Field(None, description="ISO-8601 time of the action")
    session_id: str = Field(..., min_length=1, description="Chain partition key")
    user_id: Optional[str] = None
    iep_id: Optional[str] = None

    @field_validator("metadata")
    @classmethod
    def metadata_must_be_canonical(cls, value: Optional[dict[str, Any]]) -> dict[str, Any]:
        if value is None:
            return {}
        # NaN/Infinity have no stable JSON form and would make the hash ambiguous
        json.dumps(value, allow_nan=False)
        return value

    @field_validator("timestamp")
    @classmethod
    def timestamp_must_be_utc_representable(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        try:
            return parse_timestamp(value)
        except OverflowError as e:
            raise ValueError("timestamp is out of range once converted to UTC") from e

    def hashed_event_data(self) -> dict[str, Any]:
        """Event data as it enters the hash: metadata plus correlation fields."""
        data = dict(self.metadata or {})
        if self.user_id is not None:
            data["userId"] = self.user_id
        if self.iep_id is not None:
            data["iepId"] = self.iep_id
        return data


class IngestRequest(BaseModel):
    """Batch ingestion request. Events are validated one by one by the service."""

    events: list[dict[str, Any]] = Field(default_factory=list)


class IngestResult(CamelModel):
    """Outcome for a single event of a batch."""

    event_type: Optional[str] = None
    hash: Optional[str] = None
    source: str
    error: Optional[str] = None


class IngestResponse(BaseModel):
    """Batch ingestion response."""

    success: bool = True
    logged: int = 0
    results: Optional[list[IngestResult]] = None


class LogActionRequest(CamelModel):
    """Single action logged with a server-side timestamp."""

    event_type: str = Field(..., min_length=1)
    event_data: dict[str, Any] = Field(default_factory=dict)
    session_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    iep_id: Optional[str] = None


class LogActionResponse(CamelModel):
    """Single action response."""

    success: bool = True
    logged: bool = True
    hash: str
    timestamp: str
    source: str


class VerifyResponse(CamelModel):
    """Result of walking a session's stored chain."""

    session_id: str
    valid: bool
    entries: int
    error: Optional[str] = None
