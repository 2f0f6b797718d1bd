"""ARQ job definitions: notification delivery with a dead-letter record on failure."""

import uuid
from typing import Any

from arq import create_pool
from arq.connections import RedisSettings

from enrichdesk.core.config import get_settings
from enrichdesk.core.logging import get_logger
from enrichdesk.services import notifier

log = get_logger(__name__)


async def _run_with_dlq(job_name: str, ctx: dict[str, Any], kwargs: dict[str, Any], coro) -> None:
    """Run the delivery; on exception persist a FailedJob, then re-raise so ARQ retries."""
    try:
        await coro
    except Exception as e:
        from enrichdesk.models.failed_job import FailedJob
        arq_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=arq_id,
            enrichment_job_id=kwargs.get("job_id"),
            kwargs=kwargs,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=arq_id, enrichment_job_id=kwargs.get("job_id"), reason=str(e))
        raise


async def send_new_job_email(
    ctx: dict[str, Any],
    job_id: str,
    owner_id: str,
    filename: str,
    file_ref: str,
) -> None:
    """Tell admins a new enrichment job was uploaded."""
    kwargs = {"job_id": job_id, "owner_id": owner_id, "filename": filename, "file_ref": file_ref}
    log.info("job_start", job=notifier.NEW_JOB_TASK, enrichment_job_id=job_id)
    await _run_with_dlq(
        notifier.NEW_JOB_TASK,
        ctx,
        kwargs,
        notifier.deliver_new_job_email(**kwargs),
    )


async def send_job_completed_email(
    ctx: dict[str, Any],
    job_id: str,
    owner_id: str,
    filename: str,
    numbers_found: int,
    credited_numbers: int,
    result_ref: str | None = None,
) -> None:
    """Tell the job owner the enriched file is ready."""
    kwargs = {
        "job_id": job_id,
        "owner_id": owner_id,
        "filename": filename,
        "numbers_found": numbers_found,
        "credited_numbers": credited_numbers,
        "result_ref": result_ref,
    }
    log.info("job_start", job=notifier.JOB_COMPLETED_TASK, enrichment_job_id=job_id)
    await _run_with_dlq(
        notifier.JOB_COMPLETED_TASK,
        ctx,
        kwargs,
        notifier.deliver_job_completed_email(**kwargs),
    )


async def send_welcome_email(ctx: dict[str, Any], user_id: str) -> None:
    """Welcome a user after their first sign-in."""
    log.info("job_start", job=notifier.WELCOME_TASK, user_id=user_id)
    await _run_with_dlq(
        notifier.WELCOME_TASK,
        ctx,
        {"user_id": user_id},
        notifier.deliver_welcome_email(user_id),
    )


async def startup(ctx: dict) -> None:
    from enrichdesk.core.logging import configure_logging
    from enrichdesk.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()


async def shutdown(ctx: dict) -> None:
    pass


def get_redis_settings() -> RedisSettings:
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )


async def enqueue(task: str, **kwargs: Any) -> None:
    """Enqueue a task by name (call from API)."""
    redis = await create_pool(get_redis_settings())
    try:
        await redis.enqueue_job(task, **kwargs)
    finally:
        await redis.aclose()
