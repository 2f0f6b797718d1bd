from fastapi import APIRouter, Depends, File, Query, UploadFile
from pydantic import BaseModel, Field

from enrichdesk.core.exceptions import BadRequestError
from enrichdesk.deps import parse_object_id, require_admin
from enrichdesk.models.enrichment_job import JobStatus
from enrichdesk.routers.credits import transaction_out
from enrichdesk.services import admin as admin_service
from enrichdesk.services.admin import AdminClaim
from enrichdesk.services.jobs import JobPatch, JobUpdateResult

router = APIRouter()


class TopUpRequest(BaseModel):
    amount: int = Field(gt=0, le=1_000_000)
    note: str | None = Field(default=None, max_length=500)


def _update_out(result: JobUpdateResult) -> dict:
    return {
        "job": admin_service.job_out(result.job),
        "deduction": transaction_out(result.deduction) if result.deduction else None,
        "refund": transaction_out(result.refund) if result.refund else None,
        "warnings": result.warnings,
    }


@router.get("/jobs")
async def admin_jobs(
    claim: AdminClaim = Depends(require_admin),
    status: JobStatus | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Admin: all enrichment jobs with owner emails and per-status counts."""
    return await admin_service.list_jobs(claim, status=status, limit=limit, offset=offset)


@router.patch("/jobs/{job_id}")
async def admin_edit_job(job_id: str, body: JobPatch, claim: AdminClaim = Depends(require_admin)):
    """Admin: edit status, counts, note or result file. Completing deducts credits once."""
    result = await admin_service.edit_job(claim, parse_object_id(job_id, "Job"), body)
    return _update_out(result)


@router.post("/jobs/{job_id}/result")
async def admin_upload_result(
    job_id: str,
    claim: AdminClaim = Depends(require_admin),
    file: UploadFile = File(...),
):
    """Admin: upload the enriched file for a job."""
    if not file.filename:
        raise BadRequestError("Missing filename")
    content = await file.read()
    result = await admin_service.attach_result(claim, parse_object_id(job_id, "Job"), content, file.filename)
    return _update_out(result)


@router.get("/accounts")
async def admin_accounts(
    claim: AdminClaim = Depends(require_admin),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Admin: credit accounts with balances."""
    return await admin_service.list_accounts(claim, limit=limit, offset=offset)


@router.post("/users/{user_id}/top-up")
async def admin_top_up(user_id: str, body: TopUpRequest, claim: AdminClaim = Depends(require_admin)):
    """Admin: grant credits; creates the account if the user has none."""
    return await admin_service.top_up(claim, parse_object_id(user_id, "User"), body.amount, note=body.note)


@router.get("/users/{user_id}/reconcile")
async def admin_reconcile(user_id: str, claim: AdminClaim = Depends(require_admin)):
    """Admin: compare a user's balance with the sum of their ledger."""
    return await admin_service.reconcile(claim, parse_object_id(user_id, "User"))
