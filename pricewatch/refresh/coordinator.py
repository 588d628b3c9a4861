"""Refresh Coordinator — per-provider mutual exclusion and the refresh lifecycle.

One refresh attempt is a finite state machine:

    IDLE -> LOCKED -> ACQUIRING -> EXTRACTING -> VALIDATING -> COMMITTING -> COMPLETE -> IDLE
                                                          \\-> REJECTED -> IDLE
    any non-terminal phase -> FAILED -> IDLE

Responsibilities:
- Skip non-forced refreshes while the current snapshot is inside the freshness window
- Take the provider lease with an atomic create-if-absent; contention is a normal outcome
- Sequence acquisition, extraction, validation and commit
- Commit only accepted candidates; record rejected ones as failure records
- Release the lease on every exit path
- Run attempts in the foreground or hand them to the background task pool

MUST NOT:
- Touch the current snapshot from a failed or rejected attempt
- Queue a second attempt behind one that is in flight
- Swallow faults; they are logged and surfaced as a failed outcome
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from pricewatch.acquisition.acquirer import AcquisitionTotalFailure, ContentAcquirer
from pricewatch.config.providers import ProviderDescriptor, ProviderRegistry
from pricewatch.config.settings import RefreshConfig
from pricewatch.extraction.engine import ExtractionAdapter, ExtractionError
from pricewatch.pipeline.evaluator import ConfidenceEvaluator
from pricewatch.pipeline.models import (
    AcquisitionReport,
    ExtractionOutcome,
    FailureRecord,
    PricingSnapshot,
    SnapshotMetadata,
    SnapshotSource,
    ValidationOutcome,
)
from pricewatch.refresh.background import BackgroundTaskPool
from pricewatch.refresh.phases import TERMINAL_PHASES, VALID_TRANSITIONS, RefreshPhase
from pricewatch.signals.emitter import SignalEmitter
from pricewatch.signals.types import Signal, SignalType
from pricewatch.store.artifacts import ArtifactArchive
from pricewatch.store.documents import StorageError
from pricewatch.store.versioned import VersionedStore
from pricewatch.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class RefreshError(Exception):
    """Raised on an invalid refresh phase transition."""


class RefreshStatus(str, Enum):
    """What the caller of a refresh trigger is told."""

    ACCEPTED = "accepted"
    ALREADY_RUNNING = "already_running"
    REJECTED_STALE_KEPT = "rejected_stale_kept"
    ACCEPTED_WITH_SNAPSHOT = "accepted_with_snapshot"
    FAILED = "failed"


class RefreshResult(BaseModel):
    """Outcome of one refresh trigger. Never carries a partially committed snapshot."""

    provider_id: str
    status: RefreshStatus
    job_id: str | None = None
    phase: RefreshPhase | None = None
    snapshot: PricingSnapshot | None = None
    validation: ValidationOutcome | None = None
    skipped_fresh: bool = False
    message: str = ""


_FAULT_CODES: dict[type[Exception], ErrorCode] = {
    AcquisitionTotalFailure: ErrorCode.ACQUISITION_TOTAL_FAILURE,
    ExtractionError: ErrorCode.EXTRACTION_FAILED,
    StorageError: ErrorCode.STORAGE_FAILED,
}


def _fault_code(exc: Exception) -> ErrorCode:
    for exc_type, code in _FAULT_CODES.items():
        if isinstance(exc, exc_type):
            return code
    return ErrorCode.REFRESH_UNHANDLED_EXCEPTION


MAX_TRACKED_ATTEMPTS = 256


def new_job_id() -> str:
    return f"refresh_{uuid.uuid4().hex[:12]}"


class RefreshAttempt:
    """One refresh attempt for one provider.

    The attempt owns its lease from lock() until run() returns. Every phase
    change goes through _transition() and is recorded as a signal.
    """

    def __init__(
        self,
        provider: ProviderDescriptor,
        acquirer: ContentAcquirer,
        extractor: ExtractionAdapter,
        evaluator: ConfidenceEvaluator,
        store: VersionedStore,
        config: RefreshConfig,
        artifacts: ArtifactArchive | None = None,
        ledger_dir: Path | None = None,
        job_id: str | None = None,
    ) -> None:
        self._provider = provider
        self._acquirer = acquirer
        self._extractor = extractor
        self._evaluator = evaluator
        self._store = store
        self._config = config
        self._artifacts = artifacts
        self._job_id = job_id or new_job_id()
        self._phase = RefreshPhase.IDLE
        self._holds_lease = False
        self._signals = SignalEmitter(
            job_id=self._job_id,
            provider_id=provider.id,
            ledger_path=(
                ledger_dir / provider.id / f"{self._job_id}.jsonl" if ledger_dir else None
            ),
        )

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def provider_id(self) -> str:
        return self._provider.id

    @property
    def phase(self) -> RefreshPhase:
        return self._phase

    @property
    def signals(self) -> SignalEmitter:
        return self._signals

    # --- Phase Transition ---

    async def _transition(
        self, to_phase: RefreshPhase, context: dict[str, Any] | None = None
    ) -> None:
        """Every phase transition MUST go through this method."""
        if to_phase not in VALID_TRANSITIONS.get(self._phase, set()):
            raise RefreshError(f"Invalid transition: {self._phase.value} -> {to_phase.value}")

        from_phase = self._phase
        self._phase = to_phase
        await self._signals.emit_phase_transition(
            from_phase=from_phase.value,
            to_phase=to_phase.value,
            context=context,
        )

    # --- Freshness and lease ---

    async def fresh_snapshot(self) -> PricingSnapshot | None:
        """Current snapshot if it is younger than the freshness window."""
        current = await self._store.get_current(self._provider.id)
        if current is None:
            return None
        age_s = current.age_at(self._store.now())
        if age_s >= self._config.freshness_window_s:
            return None
        await self._signals.emit(
            SignalType.REFRESH_SKIPPED_FRESH,
            {"age_s": round(age_s, 3), "scraped_at": current.scraped_at.isoformat()},
        )
        return current

    async def lock(self) -> bool:
        """Take the provider lease. Returns False when another attempt holds it."""
        acquired = await self._store.acquire_lease(
            self._provider.id, self._job_id, self._config.lease_ttl
        )
        if not acquired:
            await self._signals.emit(SignalType.LEASE_CONTENDED)
            logger.info("Refresh already running for %s", self._provider.id)
            return False

        self._holds_lease = True
        await self._signals.emit(
            SignalType.LEASE_ACQUIRED, {"ttl_s": self._config.lease_ttl_s}
        )
        await self._transition(RefreshPhase.LOCKED)
        return True

    async def _release(self) -> None:
        if not self._holds_lease:
            return
        try:
            await self._store.release_lease(self._provider.id, self._job_id)
        except Exception as exc:
            # The lease expires on its own once its TTL runs out.
            emit_structured_error(
                logger,
                code=ErrorCode.LEASE_RELEASE_FAILED,
                message=str(exc),
                suppressed=True,
                provider_id=self._provider.id,
                job_id=self._job_id,
                phase=self._phase.value,
            )
        finally:
            self._holds_lease = False

    # --- Main Run ---

    async def run(self) -> RefreshResult:
        """Run a locked attempt to a terminal phase, then release the lease."""
        if self._phase != RefreshPhase.LOCKED:
            raise RefreshError(f"Attempt {self._job_id} must be locked before it runs")

        try:
            return await self._run_phases()
        except Exception as exc:
            return await self._fail(exc)
        finally:
            await self._release()
            if self._phase in TERMINAL_PHASES:
                await self._transition(RefreshPhase.IDLE)

    async def _run_phases(self) -> RefreshResult:
        provider = self._provider
        day = self._store.today()

        await self._transition(RefreshPhase.ACQUIRING)
        report = await self._acquirer.acquire(provider)
        await self._record_pages(report)
        if self._artifacts is not None:
            self._artifacts.save_acquisition(provider.id, day, self._job_id, report)
        if not report.usable_pages:
            raise AcquisitionTotalFailure(
                f"No usable page content for {provider.id} "
                f"({len(report.failed_pages)} of {len(report.pages)} pages failed)"
            )

        await self._transition(
            RefreshPhase.EXTRACTING, {"usable_pages": len(report.usable_pages)}
        )
        extraction = await self._extractor.extract(provider, report.usable_pages)
        await self._signals.emit(
            SignalType.EXTRACTION_COMPLETE,
            {
                "model": extraction.model,
                "confidence": extraction.confidence,
                "tokens_used": extraction.tokens_used,
            },
        )
        if self._artifacts is not None:
            self._artifacts.save_extraction(provider.id, day, self._job_id, extraction)

        await self._transition(RefreshPhase.VALIDATING)
        previous = await self._store.get_current(provider.id)
        validation = self._evaluator.evaluate(
            provider, extraction.data, extraction.confidence, previous
        )
        if self._artifacts is not None:
            self._artifacts.save_validation(provider.id, day, self._job_id, validation)

        if not validation.accepted:
            return await self._reject(extraction, validation, previous)

        await self._transition(RefreshPhase.COMMITTING)
        snapshot = self._build_snapshot(report, extraction, validation)
        await self._store.commit(provider.id, snapshot)
        await self._transition(RefreshPhase.COMPLETE)
        await self._signals.emit(
            SignalType.SNAPSHOT_COMMITTED,
            {"confidence": validation.confidence, "warnings": len(validation.warnings)},
        )
        return RefreshResult(
            provider_id=provider.id,
            status=RefreshStatus.ACCEPTED_WITH_SNAPSHOT,
            job_id=self._job_id,
            phase=RefreshPhase.COMPLETE,
            snapshot=snapshot,
            validation=validation,
        )

    async def _record_pages(self, report: AcquisitionReport) -> None:
        for page in report.pages:
            if page.ok:
                await self._signals.emit(
                    SignalType.PAGE_ACQUIRED,
                    {"url": page.url, "via": page.acquired_via, "chars": len(page.text)},
                )
            else:
                await self._signals.emit(
                    SignalType.PAGE_FAILED,
                    {"url": page.url, "error": page.error or "empty content"},
                )

    async def _reject(
        self,
        extraction: ExtractionOutcome,
        validation: ValidationOutcome,
        previous: PricingSnapshot | None,
    ) -> RefreshResult:
        await self._store.record_failure(
            self._provider.id,
            FailureRecord(
                provider=self._provider.id,
                job_id=self._job_id,
                recorded_at=self._store.now(),
                outcome=validation,
                candidate=extraction.data,
                extraction_model=extraction.model,
            ),
        )
        await self._transition(RefreshPhase.REJECTED)
        await self._signals.emit(
            SignalType.VALIDATION_REJECTED,
            {"confidence": validation.confidence, "errors": validation.errors},
        )
        logger.warning(
            "Rejected candidate for %s (confidence %.2f): %s",
            self._provider.id,
            validation.confidence,
            "; ".join(validation.errors) or "no hard errors",
        )
        return RefreshResult(
            provider_id=self._provider.id,
            status=RefreshStatus.REJECTED_STALE_KEPT,
            job_id=self._job_id,
            phase=RefreshPhase.REJECTED,
            snapshot=previous,
            validation=validation,
            message="Candidate rejected; previous snapshot kept",
        )

    async def _fail(self, exc: Exception) -> RefreshResult:
        phase_at_failure = self._phase
        reason = f"{type(exc).__name__}: {exc}"
        emit_structured_error(
            logger,
            code=_fault_code(exc),
            message=reason,
            suppressed=False,
            provider_id=self._provider.id,
            job_id=self._job_id,
            phase=phase_at_failure.value,
        )
        if RefreshPhase.FAILED in VALID_TRANSITIONS.get(self._phase, set()):
            await self._transition(RefreshPhase.FAILED, {"reason": reason})
        await self._signals.emit_refresh_failed(reason, phase_at_failure.value)
        return RefreshResult(
            provider_id=self._provider.id,
            status=RefreshStatus.FAILED,
            job_id=self._job_id,
            phase=phase_at_failure,
            message=reason,
        )

    def _build_snapshot(
        self,
        report: AcquisitionReport,
        extraction: ExtractionOutcome,
        validation: ValidationOutcome,
    ) -> PricingSnapshot:
        return PricingSnapshot(
            provider=self._provider.id,
            scraped_at=self._store.now(),
            sources=[
                SnapshotSource(url=page.url, type=page.source_type, scraped_at=page.captured_at)
                for page in report.usable_pages
            ],
            data=extraction.data,
            metadata=SnapshotMetadata(
                confidence=validation.confidence,
                extraction_model=extraction.model,
                processing_time=report.duration_ms,
                schema_version=self._config.schema_version,
            ),
        )


class RefreshCoordinator:
    """Entry point for refresh triggers, foreground or background."""

    def __init__(
        self,
        registry: ProviderRegistry,
        acquirer: ContentAcquirer,
        extractor: ExtractionAdapter,
        evaluator: ConfidenceEvaluator,
        store: VersionedStore,
        config: RefreshConfig | None = None,
        pool: BackgroundTaskPool | None = None,
        artifacts: ArtifactArchive | None = None,
        ledger_dir: Path | None = None,
    ) -> None:
        self._registry = registry
        self._acquirer = acquirer
        self._extractor = extractor
        self._evaluator = evaluator
        self._store = store
        self._config = config or RefreshConfig()
        self._pool = pool or BackgroundTaskPool()
        self._artifacts = artifacts
        self._ledger_dir = ledger_dir
        self._attempts: dict[str, RefreshAttempt] = {}
        self._results: dict[str, RefreshResult] = {}

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def store(self) -> VersionedStore:
        return self._store

    @property
    def acquirer(self) -> ContentAcquirer:
        return self._acquirer

    @property
    def pool(self) -> BackgroundTaskPool:
        return self._pool

    def get_result(self, job_id: str) -> RefreshResult | None:
        """Outcome of a finished background attempt."""
        return self._results.get(job_id)

    def get_signals(self, job_id: str) -> list[Signal]:
        attempt = self._attempts.get(job_id)
        return attempt.signals.signals if attempt else []

    def _new_attempt(self, provider: ProviderDescriptor) -> RefreshAttempt:
        attempt = RefreshAttempt(
            provider=provider,
            acquirer=self._acquirer,
            extractor=self._extractor,
            evaluator=self._evaluator,
            store=self._store,
            config=self._config,
            artifacts=self._artifacts,
            ledger_dir=self._ledger_dir,
        )
        self._attempts[attempt.job_id] = attempt
        while len(self._attempts) > MAX_TRACKED_ATTEMPTS:
            oldest = next(iter(self._attempts))
            del self._attempts[oldest]
            self._results.pop(oldest, None)
        return attempt

    async def refresh(
        self, provider_id: str, force: bool = False, wait: bool = False
    ) -> RefreshResult:
        """Trigger a refresh.

        Raises UnknownProviderError for an unregistered provider id. Every
        other outcome, faults included, is reported through the result.
        """
        provider = self._registry.get(provider_id)
        attempt = self._new_attempt(provider)

        try:
            if not force:
                fresh = await attempt.fresh_snapshot()
                if fresh is not None:
                    return RefreshResult(
                        provider_id=provider_id,
                        status=RefreshStatus.ACCEPTED_WITH_SNAPSHOT,
                        snapshot=fresh,
                        skipped_fresh=True,
                        message="Current snapshot is within the freshness window",
                    )

            if not await attempt.lock():
                return RefreshResult(
                    provider_id=provider_id,
                    status=RefreshStatus.ALREADY_RUNNING,
                    message=f"A refresh for {provider_id} is already in flight",
                )
        except StorageError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.STORAGE_FAILED,
                message=str(exc),
                suppressed=False,
                provider_id=provider_id,
                job_id=attempt.job_id,
                phase=attempt.phase.value,
            )
            return RefreshResult(
                provider_id=provider_id,
                status=RefreshStatus.FAILED,
                job_id=attempt.job_id,
                phase=attempt.phase,
                message=f"StorageError: {exc}",
            )

        if wait:
            return await attempt.run()

        self._pool.submit(attempt.job_id, self._run_in_background(attempt))
        return RefreshResult(
            provider_id=provider_id,
            status=RefreshStatus.ACCEPTED,
            job_id=attempt.job_id,
            phase=attempt.phase,
            message="Refresh started",
        )

    async def _run_in_background(self, attempt: RefreshAttempt) -> RefreshResult:
        result = await attempt.run()
        # Attempts evicted while running are no longer tracked.
        if attempt.job_id in self._attempts:
            self._results[attempt.job_id] = result
        logger.info(
            "Background refresh %s for %s finished: %s",
            attempt.job_id,
            attempt.provider_id,
            result.status.value,
        )
        return result

    async def refresh_all(self, force: bool = False) -> dict[str, RefreshResult]:
        """Trigger a background refresh for every registered provider."""
        results = {}
        for provider_id in self._registry.ids:
            results[provider_id] = await self.refresh(provider_id, force=force, wait=False)
        return results

    async def drain(self) -> None:
        await self._pool.drain()
