import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from enrichdesk.core.config import get_settings
from enrichdesk.models.audit_log import AuditLog
from enrichdesk.models.credit_account import CreditAccount
from enrichdesk.models.credit_pack import CreditPack
from enrichdesk.models.credit_transaction import CreditTransaction
from enrichdesk.models.enrichment_job import EnrichmentJob
from enrichdesk.models.failed_job import FailedJob
from enrichdesk.models.user import User

DOCUMENT_MODELS = [
    User,
    CreditAccount,
    CreditTransaction,
    CreditPack,
    EnrichmentJob,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(database: AsyncIOMotorDatabase | None = None) -> None:
    """Bind Beanie documents and build indexes. `database` overrides the configured client."""
    if database is None:
        settings = get_settings()
        # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
