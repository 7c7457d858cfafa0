import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_job_runner
from app.core.config import get_settings
from app.main import app
from catalog_sync.config import get_settings as get_sync_settings
from catalog_sync.report import Outcome, SyncReportBuilder, SyncResult

CRON_SECRET = "test-cron-secret"


def _result(job: str, succeeded: int = 0, errors: list[str] | None = None) -> SyncResult:
    report = SyncReportBuilder(job)
    report.fetched(succeeded + len(errors or []))
    for _ in range(succeeded):
        report.record(Outcome.SUCCEEDED)
        report.wrote()
    for message in errors or []:
        report.record(Outcome.FAILED)
        report.error(message)
    return report.build()


class FakeJobRunner:
    def __init__(self) -> None:
        self.results: dict[str, SyncResult] = {}
        self.calls: list[str] = []

    async def __call__(self, job: str) -> SyncResult:
        self.calls.append(job)
        return self.results.get(job) or _result(job, succeeded=1)


@pytest.fixture()
def job_runner() -> FakeJobRunner:
    return FakeJobRunner()


@pytest.fixture()
def client(job_runner: FakeJobRunner, tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)
    monkeypatch.setenv("PIM_ENV", "production")
    get_settings.cache_clear()
    get_sync_settings.cache_clear()

    app.dependency_overrides[get_job_runner] = lambda: job_runner
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        get_settings.cache_clear()
        get_sync_settings.cache_clear()


@pytest.fixture()
def make_result():
    return _result


@pytest.fixture()
def auth() -> dict[str, str]:
    return {"Authorization": f"Bearer {CRON_SECRET}"}
