"""Refresh phase definitions — the finite state machine states and transitions."""

from __future__ import annotations

from enum import Enum


class RefreshPhase(str, Enum):
    """All phases of one refresh attempt. IDLE is both the entry and the
    normal exit; REJECTED and FAILED are terminal substates of an attempt
    that still hand the provider back to IDLE once the lease is released."""

    IDLE = "IDLE"
    LOCKED = "LOCKED"
    ACQUIRING = "ACQUIRING"
    EXTRACTING = "EXTRACTING"
    VALIDATING = "VALIDATING"
    COMMITTING = "COMMITTING"
    COMPLETE = "COMPLETE"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


# Valid phase transitions. Each key maps to a set of phases it can transition to.
VALID_TRANSITIONS: dict[RefreshPhase, set[RefreshPhase]] = {
    RefreshPhase.IDLE: {RefreshPhase.LOCKED},
    RefreshPhase.LOCKED: {RefreshPhase.ACQUIRING, RefreshPhase.FAILED},
    RefreshPhase.ACQUIRING: {RefreshPhase.EXTRACTING, RefreshPhase.FAILED},
    RefreshPhase.EXTRACTING: {RefreshPhase.VALIDATING, RefreshPhase.FAILED},
    RefreshPhase.VALIDATING: {
        RefreshPhase.COMMITTING,
        RefreshPhase.REJECTED,
        RefreshPhase.FAILED,
    },
    RefreshPhase.COMMITTING: {RefreshPhase.COMPLETE, RefreshPhase.FAILED},
    RefreshPhase.COMPLETE: {RefreshPhase.IDLE},
    RefreshPhase.REJECTED: {RefreshPhase.IDLE},
    RefreshPhase.FAILED: {RefreshPhase.IDLE},
}

TERMINAL_PHASES = {RefreshPhase.COMPLETE, RefreshPhase.REJECTED, RefreshPhase.FAILED}
