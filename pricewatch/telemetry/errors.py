"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    EXTRACTION_INITIALIZATION_FAILED = "EXTRACTION_INITIALIZATION_FAILED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    ACQUISITION_TOTAL_FAILURE = "ACQUISITION_TOTAL_FAILURE"
    STORAGE_FAILED = "STORAGE_FAILED"
    ARTIFACT_WRITE_FAILED = "ARTIFACT_WRITE_FAILED"
    REFRESH_UNHANDLED_EXCEPTION = "REFRESH_UNHANDLED_EXCEPTION"
    LEASE_RELEASE_FAILED = "LEASE_RELEASE_FAILED"
    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"
    BROWSER_CLEANUP_FAILED = "BROWSER_CLEANUP_FAILED"
    BACKGROUND_TASK_FAILED = "BACKGROUND_TASK_FAILED"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    provider_id: str | None = None,
    job_id: str | None = None,
    phase: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "pricewatch_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "provider_id": provider_id,
            "job_id": job_id,
            "phase": phase,
            "details": details or {},
        },
    )
