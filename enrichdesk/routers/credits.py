from fastapi import APIRouter, Depends, Query

from enrichdesk.deps import get_current_user
from enrichdesk.models.credit_transaction import CreditTransaction
from enrichdesk.models.user import User
from enrichdesk.services import ledger, packs

router = APIRouter()


def transaction_out(e: CreditTransaction) -> dict:
    return {
        "id": str(e.id),
        "amount": e.amount,
        "balance_after": e.balance_after,
        "kind": e.kind.value,
        "description": e.description,
        "related_job_id": str(e.related_job_id) if e.related_job_id else None,
        "related_pack_id": e.related_pack_id,
        "created_at": e.created_at.isoformat(),
    }


@router.get("/balance")
async def credits_balance(user: User = Depends(get_current_user)):
    """Return current credit balance."""
    return {"balance": await ledger.get_balance(user.id)}


@router.get("/transactions")
async def credits_transactions(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for current user (newest first)."""
    account = await ledger.find_account(user.id)
    entries = await ledger.list_transactions(account.id, limit=limit, offset=offset) if account else []
    return {"entries": [transaction_out(e) for e in entries], "limit": limit, "offset": offset}


@router.get("/packs")
async def credits_packs():
    """Active credit packs, smallest first."""
    return {"packs": [packs.pack_out(p) for p in await packs.list_active_packs()]}
