from datetime import datetime
from decimal import Decimal

from beanie import Document, Indexed
from pydantic import Field


class CreditPack(Document):
    """Priced bundle of credits offered for purchase. Price is stored in EUR cents."""
    code: Indexed(str, unique=True)
    name: str
    credits: int
    price_cents: int
    is_popular: bool = False
    is_active: bool = True
    features: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_packs"
        indexes = [[("is_active", 1), ("credits", 1)]]

    @property
    def price(self) -> Decimal:
        return Decimal(self.price_cents) / 100

    @property
    def price_per_credit(self) -> Decimal:
        if self.credits <= 0:
            return Decimal(0)
        return (self.price / self.credits).quantize(Decimal("0.0001"))
