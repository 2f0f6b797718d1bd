from datetime import datetime
from enum import Enum

from beanie import Delete, Document, Indexed, PydanticObjectId, Replace, Save, SaveChanges, Update, before_event
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from enrichdesk.core.exceptions import ConflictError


class TransactionKind(str, Enum):
    PURCHASE = "purchase"
    ENRICH_DEDUCTION = "enrich_deduction"
    REFUND = "refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class CreditTransaction(Document):
    """Append-only ledger entry. Inserted once; never replaced, updated or deleted."""
    account_id: PydanticObjectId
    sequence: int  # 1-based, contiguous per account
    amount: int  # positive = credit granted, negative = credit consumed
    kind: TransactionKind
    description: str = ""
    related_job_id: PydanticObjectId | None = None
    related_pack_id: str | None = None
    reference_id: str | None = None  # gateway payment intent / session id
    dedup_key: Indexed(str, unique=True)  # "<kind>:<idempotency key>"
    balance_after: int
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            IndexModel([("account_id", ASCENDING), ("sequence", ASCENDING)], unique=True, name="account_sequence_unique"),
            IndexModel([("account_id", ASCENDING), ("created_at", DESCENDING)], name="account_created_at"),
            IndexModel([("related_job_id", ASCENDING)], name="related_job"),
        ]

    @before_event(Replace, Save, SaveChanges, Update, Delete)
    def _reject_mutation(self) -> None:
        raise ConflictError(
            "Ledger transactions are immutable; record a compensating transaction instead",
            details={"transaction_id": str(self.id)},
        )
