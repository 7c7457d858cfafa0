from collections.abc import Awaitable, Callable

from fastapi import Header, Request

from app.core.config import get_settings
from app.core.errors import unauthorized
from catalog_sync.main import run_job
from catalog_sync.report import SyncResult

JobRunner = Callable[[str], Awaitable[SyncResult]]


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    settings = get_settings()
    if not settings.cron_auth_required:
        return
    if authorization != f"Bearer {settings.cron_secret}":
        raise unauthorized("Invalid or missing cron secret")


def get_job_runner(request: Request) -> JobRunner:
    session_factory = getattr(request.app.state, "session_factory", None)

    async def runner(job: str) -> SyncResult:
        return await run_job(job, session_factory=session_factory)

    return runner
