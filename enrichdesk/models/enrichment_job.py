from datetime import datetime
from enum import Enum

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel


class JobStatus(str, Enum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


# Allowed status moves. Terminal states only accept a same-status re-save.
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.UPLOADED: frozenset(
        {JobStatus.UPLOADED, JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.ERROR}
    ),
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.ERROR}),
    JobStatus.COMPLETED: frozenset({JobStatus.COMPLETED}),
    JobStatus.ERROR: frozenset({JobStatus.ERROR}),
}


class EnrichmentJob(Document):
    """One uploaded contact list waiting for (or done with) out-of-band phone enrichment."""
    owner_id: PydanticObjectId
    original_filename: str
    original_file_ref: str
    enriched_file_ref: str | None = None
    status: JobStatus = JobStatus.UPLOADED
    total_rows: int | None = None
    numbers_found: int | None = None
    credited_numbers: int | None = None  # credits deducted on completion
    admin_note: str | None = None
    revision: int = 0  # bumped on every write; compare-and-swap guard
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    class Settings:
        name = "enrichment_jobs"
        indexes = [
            IndexModel([("owner_id", ASCENDING), ("created_at", DESCENDING)], name="owner_created_at"),
            IndexModel([("status", ASCENDING), ("created_at", DESCENDING)], name="status_created_at"),
        ]
