from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.clients.base import RateLimitedClient
from catalog_sync.clients.lightspeed import LightspeedClient
from catalog_sync.clients.picqer import PicqerClient
from catalog_sync.config import SyncSettings, get_settings
from catalog_sync.db import build_engine, build_session_factory, create_tables
from catalog_sync.errors import FatalSetupFailure
from catalog_sync.lookups import BuypriceSyncJob, PicqerDataSyncJob
from catalog_sync.pipeline import CatalogSyncJob, SyncJob
from catalog_sync.report import SyncReportBuilder, SyncResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobRegistry:
    job: type[SyncJob]
    client: Callable[[SyncSettings], RateLimitedClient]


JOBS: dict[str, JobRegistry] = {
    "catalog": JobRegistry(job=CatalogSyncJob, client=LightspeedClient.from_settings),
    "buyprices": JobRegistry(job=BuypriceSyncJob, client=PicqerClient.from_settings),
    "picqer-data": JobRegistry(job=PicqerDataSyncJob, client=PicqerClient.from_settings),
}


def build_job(name: str, session: AsyncSession, client: RateLimitedClient, settings: SyncSettings) -> SyncJob:
    registry = JOBS.get(name)
    if not registry:
        raise ValueError(f"Unknown job: {name}")
    return registry.job(session, client, settings)


async def run_job(
    name: str,
    settings: SyncSettings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> SyncResult:
    """Run one job end to end and return its result; setup failures become a failed result."""
    registry = JOBS.get(name)
    if not registry:
        raise ValueError(f"Unknown job: {name}")
    settings = settings or get_settings()

    async with AsyncExitStack() as stack:
        try:
            client = registry.client(settings)
        except FatalSetupFailure as exc:
            logger.error("Cannot start %s sync: %s", name, exc)
            report = SyncReportBuilder(name, sample_limit=settings.sample_limit)
            report.abort(exc)
            return report.build()
        await stack.enter_async_context(client)

        if session_factory is None:
            engine = build_engine(settings.database_url)
            stack.push_async_callback(engine.dispose)
            await create_tables(engine)
            session_factory = build_session_factory(engine)

        session = await stack.enter_async_context(session_factory())
        return await build_job(name, session, client, settings).run()


def exit_code(result: SyncResult) -> int:
    if not result.success:
        return 1
    return 2 if result.error_count else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Catalog sync worker")
    parser.add_argument("--job", required=True, choices=sorted(JOBS.keys()))
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    result = asyncio.run(run_job(args.job))
    print(
        f"job={result.job} status={result.status} candidates={result.total_candidates} "
        f"succeeded={result.succeeded} failed={result.failed} duplicates={result.skipped_duplicate} "
        f"incomplete={result.skipped_incomplete} excluded={result.total_excluded} duration={result.duration}"
    )
    for error in result.errors:
        print(f"  error: {error}", file=sys.stderr)
    return exit_code(result)


if __name__ == "__main__":
    sys.exit(main())
