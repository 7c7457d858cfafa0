import pytest
from fakes import LIGHTSPEED_URL, PICQER_URL, FakeLightspeed, FakePicqer

from catalog_sync.config import SyncSettings
from catalog_sync.db import build_engine, build_session_factory, create_tables


@pytest.fixture()
def settings(tmp_path) -> SyncSettings:
    return SyncSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}",
        lightspeed_api_key="key",
        lightspeed_api_secret="secret",
        lightspeed_base_url=LIGHTSPEED_URL,
        picqer_api_key="key",
        picqer_base_url=PICQER_URL,
        page_size=250,
        page_delay_seconds=0,
        item_delay_seconds=0,
        batch_size=50,
    )


@pytest.fixture()
async def engine(settings: SyncSettings):
    engine = build_engine(settings.database_url)
    await create_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
async def session(session_factory):
    async with session_factory() as db:
        yield db


@pytest.fixture()
def lightspeed() -> FakeLightspeed:
    return FakeLightspeed()


@pytest.fixture()
def picqer() -> FakePicqer:
    return FakePicqer()
