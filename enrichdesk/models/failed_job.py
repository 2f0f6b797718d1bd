"""Dead-letter: notification tasks that raised inside the worker."""

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class FailedJob(Document):
    job_name: str  # ARQ task name
    job_id: str  # ARQ job id
    enrichment_job_id: str | None = None
    kwargs: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "failed_jobs"
        indexes = [[("job_name", 1), ("created_at", -1)], [("enrichment_job_id", 1)]]
