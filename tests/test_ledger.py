"""Ledger service against an in-memory MongoDB."""

import asyncio

import pytest
from beanie.operators import Set
from pymongo.errors import PyMongoError

from enrichdesk.core.exceptions import BadRequestError, ConflictError, NotFoundError
from enrichdesk.models.credit_account import CreditAccount
from enrichdesk.models.credit_transaction import CreditTransaction, TransactionKind
from enrichdesk.services import ledger


async def _transactions(account_id):
    return await CreditTransaction.find(CreditTransaction.account_id == account_id).sort(+CreditTransaction.sequence).to_list()


async def test_get_balance_without_account_is_zero(make_user):
    user = await make_user()
    assert await ledger.get_balance(user.id) == 0
    assert await ledger.find_account(user.id) is None


async def test_get_account_missing_raises(make_user):
    user = await make_user()
    with pytest.raises(NotFoundError):
        await ledger.get_account(user.id)


async def test_get_or_create_account_is_stable(make_user):
    user = await make_user()
    first = await ledger.get_or_create_account(user.id)
    second = await ledger.get_or_create_account(user.id)
    assert first.id == second.id
    assert first.balance == 0
    assert await CreditAccount.find(CreditAccount.owner_id == user.id).count() == 1


async def test_top_up_provisions_account(make_user):
    user = await make_user()
    entry, account = await ledger.admin_top_up(user.id, 500, actor_id="admin-1")
    assert account.owner_id == user.id
    assert account.balance == 500
    txs = await _transactions(account.id)
    assert len(txs) == 1
    assert txs[0].id == entry.id
    assert txs[0].amount == 500
    assert txs[0].kind == TransactionKind.ADMIN_ADJUSTMENT
    assert txs[0].balance_after == 500


@pytest.mark.parametrize("amount", [0, -5, 2.5, True])
async def test_top_up_rejects_non_positive_amount(make_user, amount):
    user = await make_user()
    with pytest.raises(BadRequestError):
        await ledger.admin_top_up(user.id, amount)
    assert await ledger.find_account(user.id) is None


async def test_apply_delta_rejects_zero(make_user):
    user = await make_user()
    account = await ledger.get_or_create_account(user.id)
    with pytest.raises(BadRequestError):
        await ledger.apply_delta(account.id, 0, TransactionKind.ADMIN_ADJUSTMENT, "nothing")
    assert await _transactions(account.id) == []


async def test_apply_delta_rejects_unknown_kind(make_user):
    user = await make_user()
    account = await ledger.get_or_create_account(user.id)
    with pytest.raises(BadRequestError):
        await ledger.apply_delta(account.id, 10, "gift", "free credits")


async def test_apply_delta_unknown_account(make_user):
    user = await make_user()
    with pytest.raises(NotFoundError):
        await ledger.apply_delta(user.id, 10, TransactionKind.ADMIN_ADJUSTMENT, "no account")


async def test_sequences_and_running_balance(make_user):
    user = await make_user()
    account = await ledger.get_or_create_account(user.id)
    for amount in (100, -30, 20):
        await ledger.apply_delta(account.id, amount, TransactionKind.ADMIN_ADJUSTMENT, "adjust")
    txs = await _transactions(account.id)
    assert [t.sequence for t in txs] == [1, 2, 3]
    assert [t.balance_after for t in txs] == [100, 70, 90]
    account = await ledger.load_account(account.id)
    assert account.balance == 90
    assert account.version == 3


async def test_negative_balance_is_allowed(make_user):
    user = await make_user()
    account = await ledger.get_or_create_account(user.id)
    await ledger.apply_delta(account.id, 10, TransactionKind.ADMIN_ADJUSTMENT, "seed")
    entry, applied = await ledger.apply_delta(account.id, -30, TransactionKind.ADMIN_ADJUSTMENT, "correction")
    assert applied
    assert entry.balance_after == -20
    assert await ledger.get_balance(user.id) == -20


async def test_idempotency_key_applies_once(make_user):
    user = await make_user()
    account = await ledger.get_or_create_account(user.id)
    first, applied_first = await ledger.apply_delta(
        account.id, 200, TransactionKind.PURCHASE, "pack", idempotency_key="pi_123"
    )
    second, applied_second = await ledger.apply_delta(
        account.id, 200, TransactionKind.PURCHASE, "pack", idempotency_key="pi_123"
    )
    assert applied_first and not applied_second
    assert first.id == second.id
    assert await ledger.get_balance(user.id) == 200
    assert len(await _transactions(account.id)) == 1


async def test_same_key_different_kind_is_distinct(make_user):
    user = await make_user()
    account = await ledger.get_or_create_account(user.id)
    await ledger.apply_delta(account.id, -30, TransactionKind.ENRICH_DEDUCTION, "job", idempotency_key="job-1")
    _, applied = await ledger.apply_delta(account.id, 30, TransactionKind.REFUND, "reversal", idempotency_key="job-1")
    assert applied
    assert await ledger.get_balance(user.id) == 0


async def test_idempotency_key_reused_for_other_account(make_user):
    alice = await make_user("alice@example.com")
    bob = await make_user("bob@example.com")
    a = await ledger.get_or_create_account(alice.id)
    b = await ledger.get_or_create_account(bob.id)
    await ledger.apply_delta(a.id, 50, TransactionKind.PURCHASE, "pack", idempotency_key="pi_shared")
    with pytest.raises(ConflictError):
        await ledger.apply_delta(b.id, 50, TransactionKind.PURCHASE, "pack", idempotency_key="pi_shared")
    assert await ledger.get_balance(bob.id) == 0


async def test_concurrent_deltas_keep_invariant(make_user):
    user = await make_user()
    account = await ledger.get_or_create_account(user.id)
    await asyncio.gather(
        *(ledger.apply_delta(account.id, 1, TransactionKind.ADMIN_ADJUSTMENT, f"grant {i}") for i in range(20))
    )
    check = await ledger.reconcile_account(account.id)
    assert check.balance == 20
    assert check.ledger_sum == 20
    assert check.transaction_count == 20
    assert check.consistent
    assert [t.sequence for t in await _transactions(account.id)] == list(range(1, 21))


async def test_failed_insert_leaves_balance_untouched(make_user, monkeypatch):
    user = await make_user()
    _, account = await ledger.admin_top_up(user.id, 100)

    async def failing_insert(self, *args, **kwargs):
        raise PyMongoError("insert failed")

    with monkeypatch.context() as m:
        m.setattr(CreditTransaction, "insert", failing_insert)
        with pytest.raises(PyMongoError):
            await ledger.apply_delta(account.id, -40, TransactionKind.ADMIN_ADJUSTMENT, "lost")

    assert await ledger.get_balance(user.id) == 100
    assert len(await _transactions(account.id)) == 1
    assert (await ledger.reconcile_account(account.id)).consistent


async def test_projection_failure_is_rolled_forward(make_user, monkeypatch):
    user = await make_user()
    account = await ledger.get_or_create_account(user.id)
    original = ledger._advance_projection
    failures = []

    async def flaky(entry):
        if not failures:
            failures.append(entry.sequence)
            raise PyMongoError("write concern timeout")
        return await original(entry)

    monkeypatch.setattr(ledger, "_advance_projection", flaky)
    entry, applied = await ledger.apply_delta(account.id, 50, TransactionKind.ADMIN_ADJUSTMENT, "grant")
    assert applied
    assert failures == [1]

    stale = await CreditAccount.get(account.id)
    assert stale.balance == 0
    assert await ledger.get_balance(user.id) == 50
    assert (await CreditAccount.get(account.id)).version == 1

    entry, _ = await ledger.apply_delta(account.id, 5, TransactionKind.ADMIN_ADJUSTMENT, "grant")
    assert entry.sequence == 2
    assert entry.balance_after == 55


async def test_transactions_are_immutable(make_user):
    user = await make_user()
    entry, _ = await ledger.admin_top_up(user.id, 10)
    entry.amount = 1000
    with pytest.raises(ConflictError):
        await entry.save()
    with pytest.raises(ConflictError):
        await entry.delete()
    stored = await CreditTransaction.get(entry.id)
    assert stored.amount == 10


async def test_reconcile_detects_drift(make_user):
    user = await make_user()
    _, account = await ledger.admin_top_up(user.id, 100)
    await CreditAccount.find_one(CreditAccount.id == account.id).update(Set({CreditAccount.balance: 999}))
    check = await ledger.reconcile_account(account.id)
    assert check.ledger_sum == 100
    assert check.balance == 999
    assert not check.consistent


async def test_list_transactions_newest_first(make_user):
    user = await make_user()
    _, account = await ledger.admin_top_up(user.id, 10)
    await ledger.admin_top_up(user.id, 20)
    await ledger.admin_top_up(user.id, 30)
    entries = await ledger.list_transactions(account.id, limit=2)
    assert [e.amount for e in entries] == [30, 20]
    entries = await ledger.list_transactions(account.id, limit=2, offset=2)
    assert [e.amount for e in entries] == [10]


async def test_list_accounts(make_user):
    for i in range(3):
        user = await make_user(f"user{i}@example.com")
        await ledger.admin_top_up(user.id, 10 * (i + 1))
    accounts, total = await ledger.list_accounts(limit=10)
    assert total == 3
    assert sorted(a.balance for a in accounts) == [10, 20, 30]
