"""REST trigger surface for the refresh pipeline.

Provides:
- POST /providers/{provider_id}/refresh — foreground or background refresh
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pricewatch.config.providers import UnknownProviderError
from pricewatch.refresh.coordinator import RefreshCoordinator, RefreshResult, RefreshStatus

router = APIRouter()

_STATUS_CODES: dict[RefreshStatus, int] = {
    RefreshStatus.ACCEPTED: 202,
    RefreshStatus.ALREADY_RUNNING: 202,
    RefreshStatus.ACCEPTED_WITH_SNAPSHOT: 200,
    RefreshStatus.REJECTED_STALE_KEPT: 422,
    RefreshStatus.FAILED: 500,
}


class RefreshRequest(BaseModel):
    """Request to refresh one provider."""

    force: bool = False
    wait: bool = False


def _coordinator(request: Request) -> RefreshCoordinator:
    return request.app.state.coordinator


def _body(result: RefreshResult) -> dict[str, Any]:
    body: dict[str, Any] = {
        "provider": result.provider_id,
        "status": result.status.value,
        "job_id": result.job_id,
        "message": result.message,
        "skipped_fresh": result.skipped_fresh,
    }
    if result.phase is not None:
        body["phase"] = result.phase.value
    if result.snapshot is not None:
        body["snapshot"] = result.snapshot.to_document()
    if result.validation is not None:
        body["validation"] = result.validation.model_dump(mode="json")
    return body


@router.post("/providers/{provider_id}/refresh")
async def refresh_provider(
    provider_id: str, request: Request, body: RefreshRequest | None = None
) -> JSONResponse:
    """Trigger a refresh.

    With ``wait`` false the pipeline runs in the background and the call
    returns 202 as soon as the lease is taken.
    """
    params = body or RefreshRequest()
    coordinator = _coordinator(request)
    try:
        result = await coordinator.refresh(provider_id, force=params.force, wait=params.wait)
    except UnknownProviderError:
        raise HTTPException(status_code=404, detail=f"Provider {provider_id} not found") from None
    return JSONResponse(status_code=_STATUS_CODES[result.status], content=_body(result))
