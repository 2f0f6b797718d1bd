"""
Enrichment job lifecycle: upload, admin edits, completion.

Completion is the one edit with a financial effect. The deduction is written
to the ledger first, keyed by the job id, and the job document is then
flipped with a compare-and-swap on `revision`. A retry after a crash between
the two replays the same deduction instead of adding a second one. If the
job is instead moved to `error`, any deduction left behind is refunded once
the job is in error, so an errored job never keeps its credits.
"""

import re
import unicodedata
from datetime import datetime
from typing import NamedTuple
from uuid import uuid4

from beanie import PydanticObjectId
from beanie.operators import Set
from pydantic import BaseModel, ConfigDict, Field

from enrichdesk.core.audit import log_event
from enrichdesk.core.config import get_settings
from enrichdesk.core.exceptions import (
    BadRequestError,
    ConcurrencyConflictError,
    ConflictError,
    InsufficientCreditsError,
    NotFoundError,
)
from enrichdesk.core.logging import get_logger
from enrichdesk.models.credit_transaction import CreditTransaction, TransactionKind
from enrichdesk.models.enrichment_job import TRANSITIONS, EnrichmentJob, JobStatus
from enrichdesk.models.user import User
from enrichdesk.services import ledger, notifier
from enrichdesk.storage.base import get_storage

log = get_logger(__name__)

ALLOWED_EXTENSIONS = (".csv", ".xls", ".xlsx")


class JobPatch(BaseModel):
    """Operator-supplied partial update; only fields explicitly set are applied."""
    model_config = ConfigDict(extra="forbid")

    status: JobStatus | None = None
    total_rows: int | None = Field(default=None, ge=0)
    numbers_found: int | None = Field(default=None, ge=0)
    credited_numbers: int | None = Field(default=None, ge=0)
    admin_note: str | None = Field(default=None, max_length=5000)
    enriched_file_ref: str | None = None


class JobCreateResult(NamedTuple):
    job: EnrichmentJob
    warnings: list[str]


class JobUpdateResult(NamedTuple):
    job: EnrichmentJob
    deduction: CreditTransaction | None
    warnings: list[str]
    refund: CreditTransaction | None = None


def normalize_filename(filename: str) -> str:
    """Strip accents and anything outside [A-Za-z0-9._-] so storage keys stay portable."""
    name = filename.strip().replace("\\", "/").split("/")[-1]
    name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name)
    name = re.sub(r"_+", "_", name).strip("._")
    return name or "upload"


async def create_job(owner: User, content: bytes, filename: str) -> JobCreateResult:
    """Store the upload and open a job in `uploaded`; admins are notified best-effort."""
    if not filename:
        raise BadRequestError("Missing filename")
    normalized = normalize_filename(filename)
    if not normalized.lower().endswith(ALLOWED_EXTENSIONS):
        raise BadRequestError("Please upload a CSV or Excel file (.csv, .xls, .xlsx)")
    if not content:
        raise BadRequestError("Uploaded file is empty")
    settings = get_settings()
    if len(content) > settings.max_upload_bytes:
        raise BadRequestError("File too large", details={"max_bytes": settings.max_upload_bytes})
    if settings.require_credits_for_upload and await ledger.get_balance(owner.id) <= 0:
        raise InsufficientCreditsError("You need credits to upload a file.")

    storage = get_storage()
    key = f"uploads/{owner.id}/{uuid4()}/{normalized}"
    await storage.put(key, content)
    job = EnrichmentJob(owner_id=owner.id, original_filename=normalized, original_file_ref=key)
    try:
        await job.insert()
    except Exception:
        await storage.delete(key)
        raise
    log.info("job_created", job_id=str(job.id), owner_id=str(owner.id), filename=normalized)
    await log_event(str(owner.id), "job_created", "enrichment_job", str(job.id), {"filename": normalized})

    warnings = []
    if not await notifier.notify_admins_new_job(str(job.id), str(owner.id), normalized, key):
        warnings.append("Upload saved but admin notification failed")
    return JobCreateResult(job, warnings)


async def get_job(job_id: PydanticObjectId) -> EnrichmentJob:
    job = await EnrichmentJob.get(job_id)
    if not job:
        raise NotFoundError("Job not found")
    return job


async def get_job_for_owner(owner_id: PydanticObjectId, job_id: PydanticObjectId) -> EnrichmentJob:
    job = await EnrichmentJob.get(job_id)
    if not job or job.owner_id != owner_id:
        raise NotFoundError("Job not found")
    return job


async def list_jobs(
    owner_id: PydanticObjectId | None = None,
    status: JobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[EnrichmentJob], int]:
    filters = []
    if owner_id is not None:
        filters.append(EnrichmentJob.owner_id == owner_id)
    if status is not None:
        filters.append(EnrichmentJob.status == status)
    total = await EnrichmentJob.find(*filters).count()
    jobs = await EnrichmentJob.find(*filters).sort(-EnrichmentJob.created_at).skip(offset).limit(limit).to_list()
    return jobs, total


async def job_stats() -> dict[str, int]:
    return {s.value: await EnrichmentJob.find(EnrichmentJob.status == s).count() for s in JobStatus}


def _check_edit(job: EnrichmentJob, target: JobStatus, changes: dict) -> None:
    if job.status.is_terminal and target != job.status:
        raise ConflictError(
            f"Job is already {job.status.value}",
            details={"job_id": str(job.id), "from": job.status.value, "to": target.value},
        )
    if target not in TRANSITIONS[job.status]:
        raise ConflictError(
            f"Cannot move job from {job.status.value} to {target.value}",
            details={"job_id": str(job.id), "from": job.status.value, "to": target.value},
        )
    if (
        job.status == JobStatus.COMPLETED
        and "credited_numbers" in changes
        and changes["credited_numbers"] != job.credited_numbers
    ):
        raise ConflictError(
            "Credited numbers cannot change after completion",
            details={"job_id": str(job.id), "credited_numbers": job.credited_numbers},
        )


async def _deduct(job: EnrichmentJob, credited: int) -> CreditTransaction:
    account = await ledger.get_account(job.owner_id)
    entry, applied = await ledger.apply_delta(
        account.id,
        -credited,
        TransactionKind.ENRICH_DEDUCTION,
        f"Enrichment job: {job.original_filename}",
        related_job_id=job.id,
        idempotency_key=str(job.id),
    )
    if entry.amount != -credited:
        raise ConflictError(
            "A different deduction is already recorded for this job",
            details={"job_id": str(job.id), "recorded": -entry.amount, "requested": credited},
        )
    if not applied:
        log.info("job_deduction_replayed", job_id=str(job.id), transaction_id=str(entry.id))
    return entry


async def _refund(job_id: PydanticObjectId, deduction: CreditTransaction) -> CreditTransaction:
    """Reverse a job's deduction. Keyed by job id, so it is written at most once."""
    entry, applied = await ledger.apply_delta(
        deduction.account_id,
        -deduction.amount,
        TransactionKind.REFUND,
        f"Reversal of deduction for job {job_id} (job moved to error)",
        related_job_id=job_id,
        idempotency_key=str(job_id),
    )
    if applied:
        log.warning(
            "job_deduction_reversed",
            job_id=str(job_id),
            deduction_id=str(deduction.id),
            transaction_id=str(entry.id),
        )
    return entry


async def _refund_orphaned_deduction(job_id: PydanticObjectId) -> CreditTransaction | None:
    """
    An errored job must not keep a deduction. One can be left behind by a crash
    between the ledger write and the job write of an earlier completion attempt.
    Only called once the job is in error, which is terminal.
    """
    deduction = await ledger.find_job_deduction(job_id)
    if deduction is None:
        return None
    return await _refund(job_id, deduction)


async def _reverse_if_abandoned(job_id: PydanticObjectId, deduction: CreditTransaction) -> None:
    """A concurrent edit moved the job to error after we deducted: put the credits back."""
    current = await get_job(job_id)
    if current.status != JobStatus.ERROR:
        return
    await _refund(job_id, deduction)
    raise ConflictError("Job was moved to error concurrently; deduction reversed", details={"job_id": str(job_id)})


async def update_job(
    job_id: PydanticObjectId,
    patch: JobPatch,
    actor_id: str | None = None,
) -> JobUpdateResult:
    """
    Apply an admin edit. Moving to `completed` sets completed_at and deducts
    credited_numbers from the owner's account exactly once; if the deduction
    cannot be recorded the job is left untouched. Saving a job as `error`
    refunds a deduction recorded for it, if any.
    """
    changes = patch.model_dump(exclude_unset=True)
    if changes.get("status", ...) is None:
        changes.pop("status")

    max_retries = max(1, get_settings().job_update_max_retries)
    for attempt in range(1, max_retries + 1):
        job = await get_job(job_id)
        target = JobStatus(changes.get("status", job.status))
        _check_edit(job, target, changes)
        completing = target == JobStatus.COMPLETED and job.status != JobStatus.COMPLETED

        now = datetime.utcnow()
        fields = dict(changes)
        deduction = None
        if completing:
            credited = fields.get("credited_numbers", job.credited_numbers) or 0
            if credited > 0:
                deduction = await _deduct(job, credited)
            fields["completed_at"] = now
        fields["updated_at"] = now
        fields["revision"] = job.revision + 1

        result = await EnrichmentJob.find_one(
            EnrichmentJob.id == job.id,
            EnrichmentJob.revision == job.revision,
        ).update(Set(fields))
        if result and result.modified_count:
            break
        log.info("job_update_retry", job_id=str(job_id), attempt=attempt)
        if deduction is not None:
            await _reverse_if_abandoned(job.id, deduction)
    else:
        raise ConcurrencyConflictError("Job was modified concurrently, please retry", details={"job_id": str(job_id)})

    refund = None
    if target == JobStatus.ERROR:
        refund = await _refund_orphaned_deduction(job_id)

    job = await get_job(job_id)
    event = "job_completed" if completing else "job_updated"
    log.info(
        event,
        job_id=str(job.id),
        status=job.status.value,
        credited_numbers=job.credited_numbers,
        deduction_id=str(deduction.id) if deduction else None,
        refund_id=str(refund.id) if refund else None,
    )
    await log_event(
        actor_id,
        event,
        "enrichment_job",
        str(job.id),
        {
            "fields": sorted(changes),
            "status": job.status.value,
            "deduction_id": str(deduction.id) if deduction else None,
            "refund_id": str(refund.id) if refund else None,
        },
    )

    warnings = []
    if completing:
        notified = await notifier.notify_user_job_completed(
            str(job.id),
            str(job.owner_id),
            job.original_filename,
            job.numbers_found if job.numbers_found is not None else (job.credited_numbers or 0),
            job.credited_numbers or 0,
            job.enriched_file_ref,
        )
        if not notified:
            warnings.append("Job updated but user notification failed")
    return JobUpdateResult(job, deduction, warnings, refund)


async def attach_result_file(
    job_id: PydanticObjectId,
    content: bytes,
    filename: str,
    actor_id: str | None = None,
) -> JobUpdateResult:
    """Store the enriched file and point the job at it."""
    if not content:
        raise BadRequestError("Uploaded file is empty")
    job = await get_job(job_id)
    key = f"enriched/{job.owner_id}/{uuid4()}/{normalize_filename(filename or 'enriched.csv')}"
    await get_storage().put(key, content)
    return await update_job(job_id, JobPatch(enriched_file_ref=key), actor_id=actor_id)


async def read_result_file(owner_id: PydanticObjectId, job_id: PydanticObjectId) -> tuple[str, bytes]:
    """Return (filename, bytes) of a completed job's enriched file."""
    job = await get_job_for_owner(owner_id, job_id)
    if job.status != JobStatus.COMPLETED or not job.enriched_file_ref:
        raise NotFoundError("Enriched file not available")
    try:
        content = await get_storage().get(job.enriched_file_ref)
    except FileNotFoundError:
        raise NotFoundError("Enriched file not available") from None
    return job.enriched_file_ref.rsplit("/", 1)[-1], content
