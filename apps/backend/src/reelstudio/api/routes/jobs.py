"""Job endpoints."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import FileResponse, RedirectResponse

from reelstudio.api.deps import (
    get_current_user_id,
    get_notifier,
    get_orchestrator,
    get_uploads,
)
from reelstudio.api.schemas import (
    JobCreateRequest,
    JobCreateResponse,
    JobDetailResponse,
    JobListItem,
    JobStatusResponse,
    error_responses,
)
from reelstudio.errors import ProviderUnavailable
from reelstudio.jobs.models import JobKind
from reelstudio.jobs.notifier import JobNotifier, JobStatusView
from reelstudio.jobs.orchestrator import JobOrchestrator
from reelstudio.uploads import UploadStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/jobs",
    tags=["jobs"],
    responses=error_responses(401, 404, 422, 502),
)


# ------------------------------------------------------------------
# POST: create jobs (202 Accepted)
# ------------------------------------------------------------------


@router.post(
    "", response_model=JobCreateResponse, status_code=202, responses=error_responses(503)
)
async def create_job(
    req: JobCreateRequest,
    user_id: str = Depends(get_current_user_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    uploads: UploadStore = Depends(get_uploads),
) -> JobCreateResponse:
    upload_id = req.params.get("upload_id")
    if isinstance(upload_id, str):
        # Jobs may only reference media their own owner uploaded
        await asyncio.to_thread(uploads.resolve, upload_id, user_id)
    try:
        job = await orchestrator.submit(user_id, req.kind, req.params)
    except ProviderUnavailable as exc:
        logger.warning("Rejected %s job for %s: %s", req.kind.value, user_id, exc)
        raise HTTPException(
            status_code=503, detail=f"{req.kind.value} provider is not available"
        ) from exc
    return JobCreateResponse(job_id=job.id, status=job.status.value, kind=job.kind.value)


# ------------------------------------------------------------------
# GET: query jobs
# ------------------------------------------------------------------


@router.get("", response_model=list[JobListItem])
async def list_jobs(
    kind: JobKind | None = None,
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    notifier: JobNotifier = Depends(get_notifier),
) -> list[JobListItem]:
    return [
        JobListItem(
            job_id=view.job_id,
            kind=view.kind.value,
            status=view.status.value,
            created_at=view.created_at,
            updated_at=view.updated_at,
        )
        for view in await asyncio.to_thread(notifier.list_jobs, user_id, kind=kind, limit=limit)
    ]


@router.get("/{job_id}", response_model=JobDetailResponse)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    notifier: JobNotifier = Depends(get_notifier),
) -> JobDetailResponse:
    job = await asyncio.to_thread(notifier.get_job, job_id, user_id)
    return JobDetailResponse.from_job(job, JobStatusView.from_job(job))


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    notifier: JobNotifier = Depends(get_notifier),
) -> JobStatusResponse:
    view = await asyncio.to_thread(notifier.get_status, job_id, user_id)
    return JobStatusResponse.from_view(view)


@router.get("/{job_id}/artifact", response_model=None, responses=error_responses(409))
async def download_artifact(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> Response:
    artifact = await orchestrator.fetch_artifact(job_id, user_id)
    if artifact.path is not None:
        return FileResponse(
            artifact.path, media_type=artifact.media_type, filename=artifact.filename
        )
    if artifact.content is not None:
        return Response(
            content=artifact.content,
            media_type=artifact.media_type,
            headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
        )
    if artifact.url:
        return RedirectResponse(artifact.url, status_code=307)
    raise ProviderUnavailable(f"job {job_id} completed without a retrievable artifact")


# ------------------------------------------------------------------
# DELETE
# ------------------------------------------------------------------


@router.delete("/{job_id}", status_code=204)
async def delete_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> Response:
    await orchestrator.delete(job_id, user_id)
    return Response(status_code=204)
