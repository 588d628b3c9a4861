"""Raw artifact archive — per-day capture of what each refresh saw.

Layout under the data directory:
    artifacts/{provider}/{YYYY-MM-DD}/{job_id}/
        page_{n}.html, page_{n}.png
        acquisition.json
        extraction.json
        validation.json

Writes are best-effort. A failed write is logged and never affects the
refresh outcome or the current snapshot.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any

from pricewatch.pipeline.models import AcquisitionReport, ExtractionOutcome, ValidationOutcome
from pricewatch.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class ArtifactArchive:
    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def job_dir(self, provider_id: str, day: date, job_id: str) -> Path:
        return self._root / provider_id / day.isoformat() / job_id

    def save_acquisition(
        self, provider_id: str, day: date, job_id: str, report: AcquisitionReport
    ) -> None:
        target = self.job_dir(provider_id, day, job_id)
        summary: dict[str, Any] = {
            "provider": provider_id,
            "duration_ms": report.duration_ms,
            "pages": [],
        }
        for index, page in enumerate(report.pages):
            entry = {
                "url": page.url,
                "type": page.source_type.value,
                "title": page.title,
                "text_length": len(page.text),
                "acquired_via": page.acquired_via,
                "error": page.error,
            }
            if page.html:
                entry["html_file"] = f"page_{index}.html"
                self._write(provider_id, target / entry["html_file"], page.html)
            if page.screenshot:
                entry["screenshot_file"] = f"page_{index}.png"
                self._write(provider_id, target / entry["screenshot_file"], page.screenshot)
            summary["pages"].append(entry)
        self._write_json(provider_id, target / "acquisition.json", summary)

    def save_extraction(
        self, provider_id: str, day: date, job_id: str, outcome: ExtractionOutcome
    ) -> None:
        self._write_json(
            provider_id,
            self.job_dir(provider_id, day, job_id) / "extraction.json",
            outcome.model_dump(mode="json"),
        )

    def save_validation(
        self, provider_id: str, day: date, job_id: str, outcome: ValidationOutcome
    ) -> None:
        self._write_json(
            provider_id,
            self.job_dir(provider_id, day, job_id) / "validation.json",
            outcome.model_dump(mode="json"),
        )

    def _write_json(self, provider_id: str, path: Path, payload: Any) -> None:
        self._write(provider_id, path, json.dumps(payload, indent=2))

    def _write(self, provider_id: str, path: Path, content: str | bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content)
        except OSError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.ARTIFACT_WRITE_FAILED,
                message=str(exc),
                suppressed=True,
                provider_id=provider_id,
                details={"path": str(path)},
            )
