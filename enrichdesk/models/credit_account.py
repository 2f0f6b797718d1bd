from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class CreditAccount(Document):
    """
    Current balance per user. `balance` is a projection of the ledger:
    it equals the sum of this account's transactions up to sequence `version`.
    Only services.ledger writes it, by compare-and-swap on `version`.
    """
    owner_id: Indexed(PydanticObjectId, unique=True)
    balance: int = 0
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_accounts"
