from fastapi import APIRouter, Depends, File, Query, Response, UploadFile

from enrichdesk.core.exceptions import BadRequestError
from enrichdesk.deps import get_current_user, parse_object_id
from enrichdesk.models.enrichment_job import EnrichmentJob, JobStatus
from enrichdesk.models.user import User
from enrichdesk.services import jobs as jobs_service

router = APIRouter()


def job_out(job: EnrichmentJob) -> dict:
    return {
        "id": str(job.id),
        "original_filename": job.original_filename,
        "status": job.status.value,
        "total_rows": job.total_rows,
        "numbers_found": job.numbers_found,
        "credited_numbers": job.credited_numbers,
        "has_result": job.status == JobStatus.COMPLETED and bool(job.enriched_file_ref),
        "created_at": job.created_at.isoformat(),
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


@router.post("")
async def jobs_upload(
    user: User = Depends(get_current_user),
    file: UploadFile = File(...),
):
    """Upload a contact list (CSV/XLS/XLSX) for enrichment."""
    if not file.filename:
        raise BadRequestError("Missing filename")
    content = await file.read()
    job, warnings = await jobs_service.create_job(user, content, file.filename)
    return {"job": job_out(job), "warnings": warnings}


@router.get("")
async def jobs_list(
    user: User = Depends(get_current_user),
    status: JobStatus | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List the current user's jobs, newest first."""
    jobs, total = await jobs_service.list_jobs(owner_id=user.id, status=status, limit=limit, offset=offset)
    return {"items": [job_out(j) for j in jobs], "total": total, "limit": limit, "offset": offset}


@router.get("/{job_id}")
async def jobs_get(job_id: str, user: User = Depends(get_current_user)):
    job = await jobs_service.get_job_for_owner(user.id, parse_object_id(job_id, "Job"))
    return job_out(job)


@router.get("/{job_id}/result")
async def jobs_result(job_id: str, user: User = Depends(get_current_user)):
    """Download the enriched file of a completed job."""
    filename, content = await jobs_service.read_result_file(user.id, parse_object_id(job_id, "Job"))
    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
