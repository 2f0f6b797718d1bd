from enrichdesk.models.user import User
from enrichdesk.models.credit_account import CreditAccount
from enrichdesk.models.credit_transaction import CreditTransaction, TransactionKind
from enrichdesk.models.credit_pack import CreditPack
from enrichdesk.models.enrichment_job import EnrichmentJob, JobStatus
from enrichdesk.models.audit_log import AuditLog
from enrichdesk.models.failed_job import FailedJob

__all__ = [
    "User",
    "CreditAccount",
    "CreditTransaction",
    "TransactionKind",
    "CreditPack",
    "EnrichmentJob",
    "JobStatus",
    "AuditLog",
    "FailedJob",
]
