from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.clients.lightspeed import LightspeedClient
from catalog_sync.clients.schemas import LightspeedProduct
from catalog_sync.config import SyncSettings, get_settings
from catalog_sync.errors import UpstreamError
from catalog_sync.fetcher import PaginatedFetcher
from catalog_sync.matching.engine import ProductPlan, ReconciliationEngine
from catalog_sync.matching.exclusion import ExclusionFilter
from catalog_sync.report import Outcome, RunState, SyncReportBuilder, SyncResult
from catalog_sync.store import CatalogStore
from catalog_sync.writer import CatalogWriter, WriteOutcome, chunked

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SyncJob:
    name = "sync"

    def __init__(self, session: AsyncSession, settings: SyncSettings | None = None, sleep: Sleep = asyncio.sleep) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._sleep = sleep

    async def run(self) -> SyncResult:
        report = SyncReportBuilder(self.name, sample_limit=self.settings.sample_limit)
        logger.info("Starting %s sync", self.name)
        try:
            await self._run(report)
        except Exception as exc:
            logger.exception("%s sync failed", self.name)
            report.abort(exc)
        return report.build()

    async def _run(self, report: SyncReportBuilder) -> None:
        raise NotImplementedError


class CatalogSyncJob(SyncJob):
    """Mirror the Lightspeed product catalog into the local store.

    Candidates are upstream products that survive the exclusion filter. Each fetched page is
    split into batches; a batch is enriched and reconciled in full before it is written, so
    EAN claims within a batch are decided in fetch order.
    """

    name = "catalog"

    def __init__(
        self,
        session: AsyncSession,
        client: LightspeedClient,
        settings: SyncSettings | None = None,
        since_id: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(session, settings, sleep)
        self.client = client
        self.since_id = since_id
        self.exclusion = ExclusionFilter(self.settings.excluded_words)

    async def _run(self, report: SyncReportBuilder) -> None:
        store = CatalogStore(self.session)
        engine = ReconciliationEngine(await store.business_key_claims(), await store.known_parent_ids())
        writer = CatalogWriter(
            self.session,
            engine,
            country_code=self.settings.price_country_code,
            locale=self.settings.content_locale,
            batch_size=self.settings.batch_size,
            item_delay_seconds=self.settings.item_delay_seconds,
            sleep=self._sleep,
        )
        fetcher = PaginatedFetcher(
            self.client.get_products,
            page_size=self.settings.page_size,
            page_delay_seconds=self.settings.page_delay_seconds,
            sleep=self._sleep,
        )

        report.advance(RunState.FETCHING)
        async for page in fetcher.iterate(since_id=self.since_id):
            report.fetched(len(page))

            report.advance(RunState.FILTERING)
            candidates, excluded = self.exclusion.split(page, lambda product: product.title)
            report.excluded(excluded)
            if excluded:
                logger.info("Excluded %s of %s products on page %s", excluded, len(page), fetcher.last_page)

            for batch_number, batch in enumerate(chunked(candidates, self.settings.batch_size), start=1):
                logger.info("Processing batch %s of page %s (%s products)", batch_number, fetcher.last_page, len(batch))
                report.advance(RunState.RECONCILING)
                plans = await self._reconcile_batch(batch, engine, report)

                report.advance(RunState.WRITING)
                for outcome in await writer.apply_batch(plans):
                    self._record(outcome, report)

            report.advance(RunState.FETCHING)

    async def _reconcile_batch(
        self,
        batch: list[LightspeedProduct],
        engine: ReconciliationEngine,
        report: SyncReportBuilder,
    ) -> list[ProductPlan]:
        plans: list[ProductPlan] = []
        for product in batch:
            try:
                enriched = await self.client.enrich(product)
            except UpstreamError as exc:
                logger.error("Failed to fetch details for product %s: %s", product.id, exc)
                report.record(Outcome.FAILED)
                report.error(f"Product {product.id} ({product.title}): {exc}")
                continue
            plans.append(engine.reconcile(enriched))
        return plans

    def _record(self, outcome: WriteOutcome, report: SyncReportBuilder) -> None:
        for message in outcome.duplicates:
            logger.warning(message)
            report.duplicate(message)
        for message in outcome.errors:
            report.error(message)

        report.record(outcome.outcome)
        if outcome.wrote_anything:
            report.wrote()
            report.count("products_written")
        report.count("content_written", outcome.content_written)
        report.count("images_written", outcome.images_written)
        report.count("variants_written", outcome.variants_written)
        report.count("prices_written", outcome.prices_written)
        report.count("prices_skipped_incomplete", outcome.prices_incomplete)
