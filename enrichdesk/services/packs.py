"""Credit packs catalogue."""

from enrichdesk.core.exceptions import NotFoundError
from enrichdesk.core.logging import get_logger
from enrichdesk.models.credit_pack import CreditPack

log = get_logger(__name__)

# Seeded when the catalogue is empty: (code, name, credits, price in cents, popular)
DEFAULT_PACKS = (
    ("starter", "Starter", 100, 2900, False),
    ("professional", "Professional", 500, 11900, True),
    ("business", "Business", 2000, 39900, False),
    ("enterprise", "Enterprise", 10000, 120000, False),
)


async def list_active_packs() -> list[CreditPack]:
    return await CreditPack.find(CreditPack.is_active == True).sort(+CreditPack.credits).to_list()  # noqa: E712


async def get_active_pack(code: str) -> CreditPack:
    pack = await CreditPack.find_one(CreditPack.code == code, CreditPack.is_active == True)  # noqa: E712
    if not pack:
        raise NotFoundError("Credit pack not found or inactive")
    return pack


async def seed_default_packs() -> int:
    """Insert the default catalogue if no pack exists yet. Returns packs inserted."""
    if await CreditPack.find_all().count():
        return 0
    for code, name, credits, price_cents, popular in DEFAULT_PACKS:
        await CreditPack(code=code, name=name, credits=credits, price_cents=price_cents, is_popular=popular).insert()
    log.info("credit_packs_seeded", count=len(DEFAULT_PACKS))
    return len(DEFAULT_PACKS)


def pack_out(pack: CreditPack) -> dict:
    return {
        "id": pack.code,
        "name": pack.name,
        "credits": pack.credits,
        "price": str(pack.price),
        "price_per_credit": str(pack.price_per_credit),
        "is_popular": pack.is_popular,
        "features": pack.features,
    }
