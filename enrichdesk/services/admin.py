"""
Admin operations. Every entry point takes an AdminClaim resolved once per
request by the `require_admin` dependency and re-checks it; a missing or
malformed claim fails closed.
"""

from dataclasses import dataclass

from beanie import PydanticObjectId

from enrichdesk.core.exceptions import ForbiddenError, NotFoundError
from enrichdesk.models.credit_account import CreditAccount
from enrichdesk.models.enrichment_job import EnrichmentJob, JobStatus
from enrichdesk.models.user import User
from enrichdesk.services import jobs as jobs_service
from enrichdesk.services import ledger


@dataclass(frozen=True)
class AdminClaim:
    user_id: str
    email: str

    @classmethod
    def for_user(cls, user: User) -> "AdminClaim":
        if not user.is_admin:
            raise ForbiddenError("Admin only")
        return cls(user_id=str(user.id), email=user.email)


def ensure_admin(claim: AdminClaim | None) -> AdminClaim:
    if not isinstance(claim, AdminClaim) or not claim.user_id:
        raise ForbiddenError("Admin only")
    return claim


async def _emails_for(owner_ids: set[PydanticObjectId]) -> dict[PydanticObjectId, str]:
    if not owner_ids:
        return {}
    users = await User.find({"_id": {"$in": list(owner_ids)}}).to_list()
    return {u.id: u.email for u in users}


def job_out(job: EnrichmentJob, owner_email: str | None = None) -> dict:
    return {
        "id": str(job.id),
        "owner_id": str(job.owner_id),
        "owner_email": owner_email,
        "original_filename": job.original_filename,
        "original_file_ref": job.original_file_ref,
        "enriched_file_ref": job.enriched_file_ref,
        "status": job.status.value,
        "total_rows": job.total_rows,
        "numbers_found": job.numbers_found,
        "credited_numbers": job.credited_numbers,
        "admin_note": job.admin_note,
        "created_at": job.created_at.isoformat(),
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


async def list_jobs(
    claim: AdminClaim,
    status: JobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    ensure_admin(claim)
    jobs, total = await jobs_service.list_jobs(status=status, limit=limit, offset=offset)
    emails = await _emails_for({j.owner_id for j in jobs})
    return {
        "items": [job_out(j, emails.get(j.owner_id)) for j in jobs],
        "total": total,
        "limit": limit,
        "offset": offset,
        "stats": await jobs_service.job_stats(),
    }


async def edit_job(claim: AdminClaim, job_id: PydanticObjectId, patch: jobs_service.JobPatch) -> jobs_service.JobUpdateResult:
    ensure_admin(claim)
    return await jobs_service.update_job(job_id, patch, actor_id=claim.user_id)


async def attach_result(claim: AdminClaim, job_id: PydanticObjectId, content: bytes, filename: str) -> jobs_service.JobUpdateResult:
    ensure_admin(claim)
    return await jobs_service.attach_result_file(job_id, content, filename, actor_id=claim.user_id)


def account_out(account: CreditAccount, email: str | None) -> dict:
    return {
        "id": str(account.id),
        "owner_id": str(account.owner_id),
        "email": email,
        "balance": account.balance,
        "created_at": account.created_at.isoformat(),
    }


async def list_accounts(claim: AdminClaim, limit: int = 50, offset: int = 0) -> dict:
    ensure_admin(claim)
    accounts, total = await ledger.list_accounts(limit=limit, offset=offset)
    emails = await _emails_for({a.owner_id for a in accounts})
    return {
        "items": [account_out(a, emails.get(a.owner_id)) for a in accounts],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


async def top_up(claim: AdminClaim, owner_id: PydanticObjectId, amount: int, note: str | None = None) -> dict:
    ensure_admin(claim)
    if not await User.get(owner_id):
        raise NotFoundError("User not found")
    entry, account = await ledger.admin_top_up(owner_id, amount, actor_id=claim.user_id, note=note)
    return {
        "transaction_id": str(entry.id),
        "amount": entry.amount,
        "balance": account.balance,
        "account_id": str(account.id),
    }


async def reconcile(claim: AdminClaim, owner_id: PydanticObjectId) -> dict:
    ensure_admin(claim)
    account = await ledger.get_account(owner_id)
    check = await ledger.reconcile_account(account.id)
    return {
        "account_id": str(check.account_id),
        "balance": check.balance,
        "ledger_sum": check.ledger_sum,
        "transactions": check.transaction_count,
        "consistent": check.consistent,
    }
