"""Signal type definitions for refresh attempt observability."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted during a refresh attempt."""

    PHASE_TRANSITION = "PHASE_TRANSITION"
    LEASE_ACQUIRED = "LEASE_ACQUIRED"
    LEASE_CONTENDED = "LEASE_CONTENDED"
    REFRESH_SKIPPED_FRESH = "REFRESH_SKIPPED_FRESH"
    PAGE_ACQUIRED = "PAGE_ACQUIRED"
    PAGE_FAILED = "PAGE_FAILED"
    EXTRACTION_COMPLETE = "EXTRACTION_COMPLETE"
    VALIDATION_REJECTED = "VALIDATION_REJECTED"
    SNAPSHOT_COMMITTED = "SNAPSHOT_COMMITTED"
    REFRESH_FAILED = "REFRESH_FAILED"


class Signal(BaseModel):
    """An immutable signal emitted during a refresh attempt.

    Signals are append-only and cannot be modified after emission.
    """

    sequence: int = Field(description="Monotonic sequence number within the attempt")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    job_id: str
    provider_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
