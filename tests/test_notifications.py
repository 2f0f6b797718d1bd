import httpx
import pytest

from enrichdesk.models.failed_job import FailedJob
from enrichdesk.models.user import ROLE_ADMIN
from enrichdesk.services import emails, mailer, notifier
from enrichdesk.worker import tasks


def test_truncate_filename():
    assert emails.truncate_filename("leads.csv") == "leads.csv"
    long_name = "a" * 60 + ".csv"
    short = emails.truncate_filename(long_name)
    assert len(short) == 40
    assert short.endswith("...")


def test_job_completed_email():
    subject, html = emails.job_completed_email("Ada", "<leads>.csv", numbers_found=42, credited_numbers=30)
    assert subject == "Your enriched file is ready: <leads>.csv"
    assert "&lt;leads&gt;.csv" in html
    assert "42" in html


def test_new_job_email_without_download_link():
    subject, html = emails.new_job_email("Admin", "ada@example.com", "Ada", None, "leads.csv", "job-1", None)
    assert subject == "New enrichment job: leads.csv"
    assert "Download link not available" in html


def test_welcome_email_links_to_sign_in():
    subject, html = emails.welcome_email("Ada", "ada@example.com")
    assert subject == "Welcome to Enrichdesk!"
    assert "http://localhost:5173/login" in html
    assert "ada@example.com" in html


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    async def fake_send(to_email, subject, html, to_name=None):
        sent.append((to_email, subject))
        return "msg-1"

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


async def test_deliver_new_job_email_to_every_admin(make_user, outbox):
    await make_user("admin1@example.com", role=ROLE_ADMIN)
    await make_user("admin2@example.com", role=ROLE_ADMIN)
    owner = await make_user("owner@example.com")
    sent = await notifier.deliver_new_job_email("job-1", str(owner.id), "leads.csv", "uploads/x/leads.csv")
    assert sent == 2
    assert sorted(to for to, _ in outbox) == ["admin1@example.com", "admin2@example.com"]


async def test_deliver_new_job_email_without_admins(make_user, outbox):
    owner = await make_user("owner@example.com")
    with pytest.raises(LookupError):
        await notifier.deliver_new_job_email("job-1", str(owner.id), "leads.csv", "uploads/x/leads.csv")
    assert outbox == []


async def test_deliver_job_completed_email(make_user, outbox):
    owner = await make_user("owner@example.com")
    await notifier.deliver_job_completed_email("job-1", str(owner.id), "leads.csv", 42, 30)
    assert outbox == [("owner@example.com", "Your enriched file is ready: leads.csv")]


async def test_deliver_welcome_email(make_user, outbox):
    user = await make_user("ada@example.com", name="Ada")
    await notifier.deliver_welcome_email(str(user.id))
    assert outbox == [("ada@example.com", "Welcome to Enrichdesk!")]


async def test_welcome_task_is_dead_lettered_for_unknown_user(db):
    with pytest.raises(LookupError):
        await tasks.send_welcome_email({"job_id": "arq-2"}, "000000000000000000000000")
    failed = await FailedJob.find_one(FailedJob.job_id == "arq-2")
    assert failed.job_name == notifier.WELCOME_TASK
    assert failed.kwargs == {"user_id": "000000000000000000000000"}


async def test_failed_task_is_dead_lettered(make_user, monkeypatch):
    owner = await make_user("owner@example.com")

    async def failing_send(*args, **kwargs):
        raise mailer.MailDeliveryError("Brevo API returned 500")

    monkeypatch.setattr(mailer, "send_email", failing_send)
    with pytest.raises(mailer.MailDeliveryError):
        await tasks.send_job_completed_email({"job_id": "arq-1"}, "job-1", str(owner.id), "leads.csv", 42, 30)
    failed = await FailedJob.find_one(FailedJob.job_id == "arq-1")
    assert failed.job_name == notifier.JOB_COMPLETED_TASK
    assert "500" in failed.reason
    assert failed.enrichment_job_id == "job-1"
    assert failed.kwargs["credited_numbers"] == 30


async def test_send_email_requires_api_key(monkeypatch):
    from enrichdesk.core.config import get_settings
    monkeypatch.setenv("BREVO_API_KEY", "")
    get_settings.cache_clear()
    with pytest.raises(mailer.MailDeliveryError):
        await mailer.send_email("ada@example.com", "Hi", "<p>Hi</p>")


async def test_send_email_posts_to_brevo(monkeypatch):
    from enrichdesk.core.config import get_settings
    monkeypatch.setenv("BREVO_API_KEY", "xkeysib-test")
    get_settings.cache_clear()
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if b"fail" in request.content:
            return httpx.Response(500, text="upstream error")
        return httpx.Response(201, json={"messageId": "<m1@brevo>"})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(httpx, "AsyncClient", lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw))
    assert await mailer.send_email("ada@example.com", "Hi", "<p>Hi</p>") == "<m1@brevo>"
    assert requests[0].headers["api-key"] == "xkeysib-test"
    with pytest.raises(mailer.MailDeliveryError):
        await mailer.send_email("ada@example.com", "fail", "<p>fail</p>")
