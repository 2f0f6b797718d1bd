"""
Best-effort notifications. Every entry point enqueues an ARQ task and reports
success as a bool; they never raise into the caller, so a committed change is
never reversed because an email could not be scheduled.
"""

from enrichdesk.core.logging import get_logger

log = get_logger(__name__)

NEW_JOB_TASK = "send_new_job_email"
JOB_COMPLETED_TASK = "send_job_completed_email"
WELCOME_TASK = "send_welcome_email"


async def _enqueue(task: str, **kwargs) -> None:
    from enrichdesk.worker.tasks import enqueue
    await enqueue(task, **kwargs)


async def notify_admins_new_job(job_id: str, owner_id: str, filename: str, file_ref: str) -> bool:
    try:
        await _enqueue(NEW_JOB_TASK, job_id=job_id, owner_id=owner_id, filename=filename, file_ref=file_ref)
    except Exception as e:
        log.warning("notification_enqueue_failed", task=NEW_JOB_TASK, job_id=job_id, error=str(e))
        return False
    return True


async def notify_user_job_completed(
    job_id: str,
    owner_id: str,
    filename: str,
    numbers_found: int,
    credited_numbers: int,
    result_ref: str | None,
) -> bool:
    try:
        await _enqueue(
            JOB_COMPLETED_TASK,
            job_id=job_id,
            owner_id=owner_id,
            filename=filename,
            numbers_found=numbers_found,
            credited_numbers=credited_numbers,
            result_ref=result_ref,
        )
    except Exception as e:
        log.warning("notification_enqueue_failed", task=JOB_COMPLETED_TASK, job_id=job_id, error=str(e))
        return False
    return True


async def notify_user_welcome(user_id: str) -> bool:
    try:
        await _enqueue(WELCOME_TASK, user_id=user_id)
    except Exception as e:
        log.warning("notification_enqueue_failed", task=WELCOME_TASK, user_id=user_id, error=str(e))
        return False
    return True


# Delivery side: run inside the ARQ worker.

async def deliver_new_job_email(job_id: str, owner_id: str, filename: str, file_ref: str) -> int:
    """Email every admin about a new upload. Returns the number of emails sent."""
    from beanie import PydanticObjectId

    from enrichdesk.core.config import get_settings
    from enrichdesk.models.user import ROLE_ADMIN, User
    from enrichdesk.services.emails import new_job_email
    from enrichdesk.services.mailer import send_email
    from enrichdesk.storage.base import get_storage

    owner = await User.get(PydanticObjectId(owner_id))
    if not owner:
        raise LookupError(f"Owner {owner_id} not found")
    admins = await User.find(User.role == ROLE_ADMIN).to_list()
    if not admins:
        raise LookupError("No admins found")
    download_url = await get_storage().signed_url(file_ref, get_settings().signed_url_ttl_seconds)
    sent = 0
    for admin in admins:
        subject, html = new_job_email(
            admin_name=admin.name or "Admin",
            owner_email=owner.email,
            owner_name=owner.name,
            owner_phone=owner.phone,
            filename=filename,
            job_id=job_id,
            download_url=download_url,
        )
        await send_email(admin.email, subject, html, to_name=admin.name or None)
        sent += 1
    log.info("new_job_email_sent", job_id=job_id, admins=sent)
    return sent


async def deliver_job_completed_email(
    job_id: str,
    owner_id: str,
    filename: str,
    numbers_found: int,
    credited_numbers: int,
    result_ref: str | None = None,
) -> None:
    from beanie import PydanticObjectId

    from enrichdesk.models.user import User
    from enrichdesk.services.emails import job_completed_email
    from enrichdesk.services.mailer import send_email

    owner = await User.get(PydanticObjectId(owner_id))
    if not owner:
        raise LookupError(f"Owner {owner_id} not found")
    subject, html = job_completed_email(
        user_name=owner.name or owner.email.split("@")[0],
        filename=filename,
        numbers_found=numbers_found,
        credited_numbers=credited_numbers,
    )
    await send_email(owner.email, subject, html, to_name=owner.name or None)
    log.info("job_completed_email_sent", job_id=job_id, owner_id=owner_id, has_result=bool(result_ref))


async def deliver_welcome_email(user_id: str) -> None:
    from beanie import PydanticObjectId

    from enrichdesk.models.user import User
    from enrichdesk.services.emails import welcome_email
    from enrichdesk.services.mailer import send_email

    user = await User.get(PydanticObjectId(user_id))
    if not user:
        raise LookupError(f"User {user_id} not found")
    subject, html = welcome_email(user_name=user.name or user.email.split("@")[0], email=user.email)
    await send_email(user.email, subject, html, to_name=user.name or None)
    log.info("welcome_email_sent", user_id=user_id)
