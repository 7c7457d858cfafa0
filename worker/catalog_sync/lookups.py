"""Jobs that look catalog EANs up in the Picqer warehouse.

``BuypriceSyncJob`` refreshes the ``buyprice`` table in bulk; ``PicqerDataSyncJob`` updates the
warehouse link and buy price on each variant in place. Both treat one EAN (or one variant) as a
candidate.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.clients.picqer import PicqerClient, PicqerSearchResult
from catalog_sync.config import SyncSettings
from catalog_sync.errors import BusinessKeyConflict, FatalSetupFailure, PersistenceFailure, UpstreamError
from catalog_sync.matching.engine import Decision, ReconciliationEngine
from catalog_sync.matching.normalization import normalize_price
from catalog_sync.pipeline import Sleep, SyncJob
from catalog_sync.report import Outcome, RunState, SyncReportBuilder
from catalog_sync.store import CatalogStore
from catalog_sync.writer import BuypriceWriter, VariantLinkWriter, chunked

logger = logging.getLogger(__name__)


class PicqerLookupJob(SyncJob):
    def __init__(
        self,
        session: AsyncSession,
        client: PicqerClient,
        settings: SyncSettings | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(session, settings, sleep)
        self.client = client

    async def _lookup(self, ean: str, report: SyncReportBuilder) -> PicqerSearchResult | None:
        """Search one EAN, recording the outcome for anything that cannot go on to be written."""
        try:
            result = await self.client.search_by_ean(ean)
        except UpstreamError as exc:
            logger.error("Failed to process EAN %s: %s", ean, exc)
            report.record(Outcome.FAILED)
            report.count("failed_lookups")
            report.error(f"Failed to process EAN {ean}: {exc}")
            return None

        if result.multiple_results:
            report.count("multiple_results")
        if result.product is None:
            logger.debug("No Picqer product for EAN %s", ean)
            report.record(Outcome.SKIPPED_INCOMPLETE)
            report.count("skipped_no_results")
            return None

        report.count("successful_lookups")
        return result

    async def _pause_between_batches(self, batch_number: int) -> None:
        if batch_number > 1 and self.settings.page_delay_seconds:
            await self._sleep(self.settings.page_delay_seconds)


class BuypriceSyncJob(PicqerLookupJob):
    name = "buyprices"

    async def _run(self, report: SyncReportBuilder) -> None:
        eans = await CatalogStore(self.session).unique_variant_eans()
        if not eans:
            raise FatalSetupFailure("No EANs found in variant table")
        logger.info("Found %s unique EANs to look up", len(eans))

        writer = BuypriceWriter(self.session)
        report.count("cleared", await writer.clear())

        report.fetched(len(eans))
        batches = list(chunked(eans, self.settings.batch_size))
        for batch_number, batch in enumerate(batches, start=1):
            await self._pause_between_batches(batch_number)
            logger.info("Processing batch %s/%s (%s EANs)", batch_number, len(batches), len(batch))

            report.advance(RunState.FETCHING)
            rows: list[tuple[str, Decimal]] = []
            for ean in batch:
                result = await self._lookup(ean, report)
                if result is None:
                    continue
                price = normalize_price(result.product.fixedstockprice)
                if price is None:
                    report.record(Outcome.SKIPPED_INCOMPLETE)
                    report.count("skipped_no_price")
                    continue
                rows.append((ean, price))

            report.advance(RunState.WRITING)
            try:
                inserted = await writer.insert_batch(rows)
            except PersistenceFailure as exc:
                logger.error("Failed to insert buyprice batch %s: %s", batch_number, exc)
                report.error(f"Failed to insert batch {batch_number}: {exc}")
                for _ in rows:
                    report.record(Outcome.FAILED)
                continue

            for _ in rows:
                report.record(Outcome.SUCCEEDED)
            report.wrote(inserted)
            report.count("inserted", inserted)


class PicqerDataSyncJob(PicqerLookupJob):
    """Link each variant to its Picqer product and copy the fixed stock price onto it.

    A Picqer product may back only one variant. The first variant (existing links first, then
    processing order) keeps it; later variants resolving to the same Picqer product are
    reported as duplicates and not linked to it. Buy prices are cleared up front, so a variant
    only keeps one if Picqer still reports it.
    """

    name = "picqer-data"

    async def _run(self, report: SyncReportBuilder) -> None:
        store = CatalogStore(self.session)
        variants = await store.variants_with_eans()
        if not variants:
            raise FatalSetupFailure("No variants with EANs found in variant table")
        engine = ReconciliationEngine(await store.warehouse_claims())
        writer = VariantLinkWriter(self.session)
        # Prices are repopulated from Picqer below; variants without a hit or a price end up empty.
        report.count("cleared", await writer.clear_buyprices())

        report.fetched(len(variants))
        batches = list(chunked(variants, self.settings.batch_size))
        for batch_number, batch in enumerate(batches, start=1):
            await self._pause_between_batches(batch_number)
            logger.info("Processing batch %s/%s (%s variants)", batch_number, len(batches), len(batch))

            for variant in batch:
                report.advance(RunState.FETCHING)
                result = await self._lookup(variant.ean, report)
                if result is None:
                    continue

                report.advance(RunState.RECONCILING)
                product = result.product
                key = str(product.idproduct)
                decision = engine.claim(key, variant.id)
                if decision is Decision.SKIP_DUPLICATE:
                    conflict = BusinessKeyConflict(
                        key,
                        owner=f"variant {engine.owner_of(key)}",
                        claimant=f"variant {variant.id} (EAN {variant.ean})",
                        title=product.name,
                        label="Picqer product",
                    )
                    report.duplicate(conflict.describe())
                    report.record(Outcome.SKIPPED_DUPLICATE)
                    continue

                price = normalize_price(product.fixedstockprice)
                report.advance(RunState.WRITING)
                try:
                    await writer.update_variant(variant.id, product.idproduct, price)
                except PersistenceFailure as exc:
                    if decision is Decision.CREATE:
                        engine.release(variant.id, [key])
                    report.error(f"Failed to update variant {variant.id}: {exc}")
                    report.record(Outcome.FAILED)
                    continue

                report.wrote()
                report.count("updated_variants")
                if price is None:
                    report.count("skipped_no_price")
                    report.record(Outcome.SKIPPED_INCOMPLETE)
                else:
                    report.record(Outcome.SUCCEEDED)

