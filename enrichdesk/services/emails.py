"""Email bodies for account and job notifications."""

from html import escape

from enrichdesk.core.config import get_settings

SUBJECT_FILENAME_MAX = 40


def truncate_filename(filename: str, limit: int = SUBJECT_FILENAME_MAX) -> str:
    """Long filenames break MIME subject encoding; keep `limit` chars including the ellipsis."""
    if len(filename) <= limit:
        return filename
    return filename[: limit - 3] + "..."


def _layout(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\"></head>"
        "<body style=\"font-family: Arial, sans-serif; line-height: 1.6; color: #333;\">"
        f"<div style=\"max-width: 600px; margin: 0 auto; padding: 20px;\"><h2>{escape(title)}</h2>"
        f"{body}"
        "<p style=\"color: #666; font-size: 12px;\">This is an automated message.</p>"
        "</div></body></html>"
    )


def new_job_email(
    admin_name: str,
    owner_email: str,
    owner_name: str,
    owner_phone: str | None,
    filename: str,
    job_id: str,
    download_url: str | None,
) -> tuple[str, str]:
    """Return (subject, html) for the admin new-upload notice."""
    dashboard = f"{get_settings().public_site_url.rstrip('/')}/admin"
    download = (
        f"<p><a href=\"{escape(download_url)}\">Download the uploaded file</a> (link valid 7 days)</p>"
        if download_url
        else "<p>Download link not available; use the admin dashboard.</p>"
    )
    body = (
        f"<p>Hello {escape(admin_name)},</p>"
        "<p>A new file was uploaded for enrichment.</p>"
        "<ul>"
        f"<li><strong>File:</strong> {escape(filename)}</li>"
        f"<li><strong>Job:</strong> {escape(job_id)}</li>"
        f"<li><strong>User:</strong> {escape(owner_name or 'N/A')} &lt;{escape(owner_email)}&gt;</li>"
        f"<li><strong>Phone:</strong> {escape(owner_phone or 'N/A')}</li>"
        "</ul>"
        f"{download}"
        f"<p><a href=\"{escape(dashboard)}\">Open the admin dashboard</a></p>"
    )
    return f"New enrichment job: {truncate_filename(filename)}", _layout("New enrichment job", body)


def job_completed_email(
    user_name: str,
    filename: str,
    numbers_found: int,
    credited_numbers: int,
) -> tuple[str, str]:
    """Return (subject, html) for the user completion notice."""
    dashboard = f"{get_settings().public_site_url.rstrip('/')}/app"
    body = (
        f"<p>Hello {escape(user_name)},</p>"
        f"<p>Your file <strong>{escape(filename)}</strong> has been enriched.</p>"
        "<ul>"
        f"<li><strong>Phone numbers found:</strong> {numbers_found}</li>"
        f"<li><strong>Credits used:</strong> {credited_numbers}</li>"
        "</ul>"
        "<p>Your enriched file is now available in your dashboard.</p>"
        f"<p><a href=\"{escape(dashboard)}\">Go to my dashboard</a></p>"
    )
    return f"Your enriched file is ready: {truncate_filename(filename)}", _layout("Enrichment completed", body)


def welcome_email(user_name: str, email: str) -> tuple[str, str]:
    """Return (subject, html) for the first sign-in welcome."""
    settings = get_settings()
    sign_in = f"{settings.public_site_url.rstrip('/')}/login"
    body = (
        f"<p>Hello {escape(user_name)},</p>"
        f"<p>Thank you for creating an account with {escape(settings.mail_sender_name)}. "
        "Your account is ready to use.</p>"
        f"<p><a href=\"{escape(sign_in)}\">Sign in to your dashboard</a></p>"
        f"<p><strong>Account email:</strong> {escape(email)}</p>"
        "<p><strong>What's next?</strong></p>"
        "<ul>"
        "<li>Purchase credits to start enriching your data</li>"
        "<li>Upload your CSV or Excel file with contact information</li>"
        "<li>Get enriched results within 24 hours</li>"
        "</ul>"
        "<p>If you didn't create this account, please contact us immediately.</p>"
    )
    return f"Welcome to {settings.mail_sender_name}!", _layout("Welcome", body)
