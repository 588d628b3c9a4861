"""Versioned Store — current pointer, dated archive, failure records and leases.

Key layout:
    pricing:{provider}:current          accepted snapshot, no expiry
    pricing:{provider}:{YYYY-MM-DD}     daily archive, retention-bound
    validation:{provider}:last_failure  last rejected candidate
    scraping:{provider}:lock            refresh lease (job id + expiry)

Contract: commit() writes current first, then the archive entry for the
snapshot's calendar day. An archive entry is never visible without the
matching current write having succeeded.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel

from pricewatch.config.providers import ProviderRegistry
from pricewatch.config.settings import StoreConfig
from pricewatch.pipeline.models import FailureRecord, PricingSnapshot
from pricewatch.store.documents import DocumentStore, StorageError
from pricewatch.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


def current_key(provider_id: str) -> str:
    return f"pricing:{provider_id}:current"


def archive_key(provider_id: str, day: date) -> str:
    return f"pricing:{provider_id}:{day.isoformat()}"


def failure_key(provider_id: str) -> str:
    return f"validation:{provider_id}:last_failure"


def lease_key(provider_id: str) -> str:
    return f"scraping:{provider_id}:lock"


class Lease(BaseModel):
    """An unexpired claim on a provider's refresh."""

    provider_id: str
    job_id: str
    acquired_at: datetime
    expires_at: datetime


class FallbackTier(str, Enum):
    CURRENT = "current"
    RECENT_ARCHIVE = "recent_archive"
    WEEK_ARCHIVE = "week_archive"
    STATIC_DEFAULT = "static_default"


class FallbackResult(BaseModel):
    """Best-effort read. ``snapshot`` is None only at the static-default tier."""

    provider_id: str
    tier: FallbackTier
    snapshot: PricingSnapshot | None = None
    default: Any = None
    archive_date: date | None = None

    @property
    def has_data(self) -> bool:
        return self.snapshot is not None or self.default is not None

    @property
    def data(self) -> Any:
        return self.snapshot.data if self.snapshot is not None else self.default


class VersionedStore:
    """Snapshot persistence on top of a DocumentStore."""

    def __init__(
        self,
        documents: DocumentStore,
        config: StoreConfig | None = None,
        registry: ProviderRegistry | None = None,
    ) -> None:
        self._documents = documents
        self._config = config or StoreConfig()
        self._registry = registry

    @property
    def documents(self) -> DocumentStore:
        return self._documents

    @property
    def archive_retention(self) -> timedelta:
        return timedelta(days=self._config.archive_retention_days)

    @property
    def failure_retention(self) -> timedelta:
        return timedelta(days=self._config.failure_retention_days)

    def now(self) -> datetime:
        return self._documents.now()

    def today(self) -> date:
        return self.now().date()

    # --- Current and archive ---

    async def get_current(self, provider_id: str) -> PricingSnapshot | None:
        return self._load_snapshot(await self._documents.get(current_key(provider_id)))

    async def get_archived(self, provider_id: str, day: date) -> PricingSnapshot | None:
        return self._load_snapshot(await self._documents.get(archive_key(provider_id, day)))

    async def commit(self, provider_id: str, snapshot: PricingSnapshot) -> None:
        """Write current, then the archive entry for the snapshot's day.

        Once current is written the snapshot is committed. A failed archive
        write is logged and does not undo or fail the commit.
        """
        if snapshot.provider != provider_id:
            raise StorageError(
                f"Snapshot for {snapshot.provider} cannot be committed under {provider_id}"
            )
        document = snapshot.to_document()
        await self._documents.put(current_key(provider_id), document)
        day = snapshot.scraped_at.date()
        try:
            await self._documents.put(
                archive_key(provider_id, day), document, ttl=self.archive_retention
            )
        except StorageError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.STORAGE_FAILED,
                message=f"Archive write failed: {exc}",
                suppressed=True,
                provider_id=provider_id,
                details={"archive_date": day.isoformat()},
            )
        logger.info("Committed snapshot for %s (scrapedAt %s)", provider_id, document["scrapedAt"])

    async def list_archive_dates(self, provider_id: str) -> list[date]:
        prefix = f"pricing:{provider_id}:"
        dates = []
        for key in await self._documents.keys(prefix):
            suffix = key[len(prefix) :]
            try:
                dates.append(date.fromisoformat(suffix))
            except ValueError:
                continue
        return sorted(dates)

    async def expire_archives(self, provider_id: str) -> list[date]:
        """Delete archive entries older than the retention period."""
        cutoff = self.today() - self.archive_retention
        expired = [day for day in await self.list_archive_dates(provider_id) if day < cutoff]
        for day in expired:
            await self._documents.delete(archive_key(provider_id, day))
        if expired:
            logger.info("Expired %d archive entries for %s", len(expired), provider_id)
        return expired

    # --- Failure records ---

    async def record_failure(self, provider_id: str, record: FailureRecord) -> None:
        await self._documents.put(
            failure_key(provider_id),
            record.model_dump(mode="json"),
            ttl=self.failure_retention,
        )

    async def get_last_failure(self, provider_id: str) -> FailureRecord | None:
        raw = await self._documents.get(failure_key(provider_id))
        return FailureRecord.model_validate(raw) if raw is not None else None

    # --- Leases ---

    async def acquire_lease(self, provider_id: str, job_id: str, ttl: timedelta) -> bool:
        """Atomic create-if-absent. An expired lease counts as absent."""
        now = self._documents.now()
        lease = Lease(
            provider_id=provider_id,
            job_id=job_id,
            acquired_at=now,
            expires_at=now + ttl,
        )
        return await self._documents.put_if_absent(
            lease_key(provider_id), lease.model_dump(mode="json"), ttl=ttl
        )

    async def get_lease(self, provider_id: str) -> Lease | None:
        raw = await self._documents.get(lease_key(provider_id))
        return Lease.model_validate(raw) if raw is not None else None

    async def release_lease(self, provider_id: str, job_id: str) -> bool:
        """Release the lease if ``job_id`` still holds it.

        A lease that expired and was taken over by another job is left alone.
        """
        return await self._documents.delete_if(
            lease_key(provider_id),
            lambda raw: isinstance(raw, dict) and raw.get("job_id") == job_id,
        )

    # --- Fallback chain ---

    async def get_best_effort(self, provider_id: str) -> FallbackResult:
        """current -> yesterday's archive -> archive from a week ago -> static default.

        Read errors on one tier are logged and the next tier is tried. Never
        raises when nothing is stored; the last tier may carry no data.
        """
        today = self.today()
        tiers = [
            (FallbackTier.CURRENT, None),
            (FallbackTier.RECENT_ARCHIVE, today - timedelta(days=1)),
            (FallbackTier.WEEK_ARCHIVE, today - timedelta(days=7)),
        ]
        for tier, day in tiers:
            try:
                if day is None:
                    snapshot = await self.get_current(provider_id)
                else:
                    snapshot = await self.get_archived(provider_id, day)
            except StorageError as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.STORAGE_FAILED,
                    message=str(exc),
                    suppressed=True,
                    provider_id=provider_id,
                    details={"fallback_tier": tier.value},
                )
                continue
            if snapshot is not None:
                return FallbackResult(
                    provider_id=provider_id, tier=tier, snapshot=snapshot, archive_date=day
                )

        return FallbackResult(
            provider_id=provider_id,
            tier=FallbackTier.STATIC_DEFAULT,
            default=self._static_default(provider_id),
        )

    def _static_default(self, provider_id: str) -> Any:
        if self._registry is None or provider_id not in self._registry:
            return None
        return self._registry.get(provider_id).fallback_data

    @staticmethod
    def _load_snapshot(raw: Any) -> PricingSnapshot | None:
        if raw is None:
            return None
        try:
            return PricingSnapshot.from_document(raw)
        except ValueError as exc:
            raise StorageError(f"Stored snapshot is unreadable: {exc}") from exc
