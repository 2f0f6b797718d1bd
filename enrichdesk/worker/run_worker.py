"""Run ARQ worker. Usage: python -m enrichdesk.worker.run_worker"""

from arq import run_worker

from enrichdesk.worker.tasks import (
    get_redis_settings,
    send_job_completed_email,
    send_new_job_email,
    send_welcome_email,
    shutdown,
    startup,
)


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [send_new_job_email, send_job_completed_email, send_welcome_email]
    on_startup = startup
    on_shutdown = shutdown
    max_tries = 3


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
