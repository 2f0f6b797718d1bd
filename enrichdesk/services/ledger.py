"""
Credit ledger: the single writer of account balances.

Every balance change is an append to `credit_transactions` followed by a
compare-and-swap on the account's `version`. The transaction insert is the
commit point: `(account_id, sequence)` is unique, so two writers cannot both
append the next sequence, and an account whose projection lags behind its
transactions is rolled forward on the next read.
"""

import asyncio
import random
from datetime import datetime
from typing import NamedTuple
from uuid import uuid4

from beanie import PydanticObjectId
from beanie.operators import Inc, Set
from pymongo.errors import DuplicateKeyError, PyMongoError

from enrichdesk.core.audit import log_event
from enrichdesk.core.config import get_settings
from enrichdesk.core.exceptions import BadRequestError, ConcurrencyConflictError, ConflictError, NotFoundError
from enrichdesk.core.logging import get_logger
from enrichdesk.models.credit_account import CreditAccount
from enrichdesk.models.credit_transaction import CreditTransaction, TransactionKind

log = get_logger(__name__)


class LedgerCheck(NamedTuple):
    account_id: PydanticObjectId
    balance: int
    ledger_sum: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum


def _dedup_key(kind: TransactionKind, idempotency_key: str | None) -> str:
    return f"{kind.value}:{idempotency_key or uuid4().hex}"


def _coerce_kind(kind: TransactionKind | str) -> TransactionKind:
    try:
        return TransactionKind(kind)
    except ValueError:
        raise BadRequestError(f"Invalid transaction kind: {kind}") from None


async def _advance_projection(entry: CreditTransaction) -> bool:
    """Fold one transaction into its account if the account is exactly one step behind."""
    result = await CreditAccount.find_one(
        CreditAccount.id == entry.account_id,
        CreditAccount.version == entry.sequence - 1,
    ).update(
        Inc({CreditAccount.balance: entry.amount}),
        Set({CreditAccount.version: entry.sequence, CreditAccount.updated_at: datetime.utcnow()}),
    )
    return bool(result and result.modified_count)


async def _sync(account: CreditAccount) -> CreditAccount:
    """Roll forward transactions committed but not yet reflected in the balance."""
    pending = (
        await CreditTransaction.find(
            CreditTransaction.account_id == account.id,
            CreditTransaction.sequence > account.version,
        )
        .sort(+CreditTransaction.sequence)
        .to_list()
    )
    if not pending:
        return account
    for entry in pending:
        await _advance_projection(entry)
    log.info("ledger_rolled_forward", account_id=str(account.id), pending=len(pending))
    refreshed = await CreditAccount.get(account.id)
    return refreshed or account


async def load_account(account_id: PydanticObjectId) -> CreditAccount:
    account = await CreditAccount.get(account_id)
    if not account:
        raise NotFoundError("Credit account not found")
    return await _sync(account)


async def find_account(owner_id: PydanticObjectId) -> CreditAccount | None:
    account = await CreditAccount.find_one(CreditAccount.owner_id == owner_id)
    if not account:
        return None
    return await _sync(account)


async def get_account(owner_id: PydanticObjectId) -> CreditAccount:
    """Account for owner; missing account is an error (deductions never create one)."""
    account = await find_account(owner_id)
    if not account:
        raise NotFoundError("Credit account not found for user")
    return account


async def get_or_create_account(owner_id: PydanticObjectId) -> CreditAccount:
    account = await find_account(owner_id)
    if account:
        return account
    try:
        account = CreditAccount(owner_id=owner_id, balance=0, version=0)
        await account.insert()
        log.info("credit_account_created", account_id=str(account.id), owner_id=str(owner_id))
        return account
    except DuplicateKeyError:
        # Lost the race on the unique owner index; the other writer's account wins.
        return await get_account(owner_id)


async def get_balance(owner_id: PydanticObjectId) -> int:
    """Return current balance for user (0 if no account)."""
    account = await find_account(owner_id)
    return account.balance if account else 0


async def apply_delta(
    account_id: PydanticObjectId,
    amount: int,
    kind: TransactionKind | str,
    description: str,
    *,
    related_job_id: PydanticObjectId | None = None,
    related_pack_id: str | None = None,
    idempotency_key: str | None = None,
    reference_id: str | None = None,
) -> tuple[CreditTransaction, bool]:
    """
    Apply a signed delta to an account together with its transaction record.
    Returns (transaction, applied). With an idempotency key, a replay returns the
    original transaction and applied=False; nothing is written.
    Negative resulting balances are allowed.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
        raise BadRequestError("Amount must be a nonzero integer", details={"amount": amount})
    kind = _coerce_kind(kind)
    dedup_key = _dedup_key(kind, idempotency_key)

    if idempotency_key:
        existing = await _replayed(account_id, dedup_key)
        if existing:
            return existing, False

    max_retries = max(1, get_settings().ledger_max_retries)
    for attempt in range(1, max_retries + 1):
        account = await load_account(account_id)
        entry = CreditTransaction(
            account_id=account.id,
            sequence=account.version + 1,
            amount=amount,
            kind=kind,
            description=description,
            related_job_id=related_job_id,
            related_pack_id=related_pack_id,
            reference_id=reference_id,
            dedup_key=dedup_key,
            balance_after=account.balance + amount,
        )
        try:
            await entry.insert()
        except DuplicateKeyError:
            if idempotency_key:
                existing = await _replayed(account_id, dedup_key)
                if existing:
                    return existing, False
            log.info("ledger_retry", account_id=str(account_id), attempt=attempt, sequence=entry.sequence)
            await asyncio.sleep(random.uniform(0, 0.005) * attempt)
            continue

        try:
            advanced = await _advance_projection(entry)
        except PyMongoError as exc:
            # Committed already; the next read of this account rolls it forward.
            log.warning(
                "ledger_projection_deferred",
                account_id=str(account_id),
                sequence=entry.sequence,
                error=str(exc),
            )
            advanced = False
        log.info(
            "ledger_delta_applied",
            account_id=str(account_id),
            transaction_id=str(entry.id),
            kind=kind.value,
            amount=amount,
            balance_after=entry.balance_after,
            projected=advanced,
        )
        return entry, True

    log.warning("ledger_retries_exhausted", account_id=str(account_id), attempts=max_retries)
    raise ConcurrencyConflictError(details={"account_id": str(account_id)})


async def _replayed(account_id: PydanticObjectId, dedup_key: str) -> CreditTransaction | None:
    existing = await CreditTransaction.find_one(CreditTransaction.dedup_key == dedup_key)
    if not existing:
        return None
    if existing.account_id != account_id:
        raise ConflictError("Idempotency key already used for another account", details={"dedup_key": dedup_key})
    log.info("ledger_replayed", account_id=str(account_id), transaction_id=str(existing.id), dedup_key=dedup_key)
    return existing


async def find_job_deduction(job_id: PydanticObjectId) -> CreditTransaction | None:
    return await CreditTransaction.find_one(
        CreditTransaction.dedup_key == _dedup_key(TransactionKind.ENRICH_DEDUCTION, str(job_id))
    )


async def admin_top_up(
    owner_id: PydanticObjectId,
    amount: int,
    actor_id: str | None = None,
    note: str | None = None,
) -> tuple[CreditTransaction, CreditAccount]:
    """Grant credits by hand. Creates the account first if the user has none."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise BadRequestError("Top-up amount must be a positive integer", details={"amount": amount})
    account = await get_or_create_account(owner_id)
    description = f"Admin top-up: {note}" if note else "Admin top-up"
    entry, _ = await apply_delta(account.id, amount, TransactionKind.ADMIN_ADJUSTMENT, description)
    await log_event(
        actor_id,
        "credits_topped_up",
        "credit_account",
        str(account.id),
        {"owner_id": str(owner_id), "amount": amount, "transaction_id": str(entry.id)},
    )
    return entry, await load_account(account.id)


async def list_transactions(account_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[CreditTransaction]:
    return (
        await CreditTransaction.find(CreditTransaction.account_id == account_id)
        .sort(-CreditTransaction.sequence)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def list_accounts(limit: int = 50, offset: int = 0) -> tuple[list[CreditAccount], int]:
    total = await CreditAccount.find_all().count()
    accounts = await CreditAccount.find_all().sort(-CreditAccount.created_at).skip(offset).limit(limit).to_list()
    return [await _sync(a) for a in accounts], total


async def reconcile_account(account_id: PydanticObjectId) -> LedgerCheck:
    """Compare the stored balance with the sum of the account's transactions."""
    account = await load_account(account_id)
    ledger_sum = await CreditTransaction.find(CreditTransaction.account_id == account.id).sum(CreditTransaction.amount)
    count = await CreditTransaction.find(CreditTransaction.account_id == account.id).count()
    check = LedgerCheck(account.id, account.balance, int(ledger_sum or 0), count)
    if not check.consistent:
        log.error(
            "ledger_inconsistent",
            account_id=str(account.id),
            balance=check.balance,
            ledger_sum=check.ledger_sum,
        )
    return check
