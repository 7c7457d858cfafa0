from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.errors import PersistenceFailure
from catalog_sync.matching.engine import Decision, ProductPlan, ReconciliationEngine
from catalog_sync.models import BuyPrice, Content, Price, Product, ProductImage, Variant, utc_now
from catalog_sync.report import Outcome
from catalog_sync.store import upsert_statement

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 50


def chunked(items: Sequence[T], size: int = DEFAULT_BATCH_SIZE) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


@dataclass
class WriteOutcome:
    external_id: int
    title: str | None = None
    parent_written: bool = False
    content_written: int = 0
    images_written: int = 0
    variants_written: int = 0
    prices_written: int = 0
    prices_incomplete: int = 0
    errors: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    released_keys: list[str] = field(default_factory=list)

    @property
    def wrote_anything(self) -> bool:
        return self.parent_written

    @property
    def outcome(self) -> Outcome:
        if self.errors:
            return Outcome.FAILED
        if self.duplicates:
            return Outcome.SKIPPED_DUPLICATE
        if self.prices_incomplete:
            return Outcome.SKIPPED_INCOMPLETE
        return Outcome.SUCCEEDED


class CatalogWriter:
    """Apply reconciled product plans to the catalog store.

    Every step runs in its own transaction and a failed step is recorded on the outcome without
    stopping the steps that do not depend on it. Images, variants and locale content are
    replace-all per product. Prices are replace-for-key: only the rows of the EAN being written
    are touched.
    """

    def __init__(
        self,
        session: AsyncSession,
        engine: ReconciliationEngine,
        country_code: str = "NL",
        locale: str = "NL",
        batch_size: int = DEFAULT_BATCH_SIZE,
        item_delay_seconds: float = 0.2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.engine = engine
        self.country_code = country_code
        self.locale = locale
        self.batch_size = batch_size
        self.item_delay_seconds = max(0.0, item_delay_seconds)
        self._sleep = sleep

    async def apply_batch(self, plans: Sequence[ProductPlan]) -> list[WriteOutcome]:
        outcomes: list[WriteOutcome] = []
        first = True
        for chunk in chunked(plans, self.batch_size):
            for plan in chunk:
                if not first and self.item_delay_seconds:
                    await self._sleep(self.item_delay_seconds)
                first = False
                outcomes.append(await self.apply(plan))
        return outcomes

    async def apply(self, plan: ProductPlan) -> WriteOutcome:
        outcome = WriteOutcome(external_id=plan.external_id, title=plan.title)
        outcome.duplicates = [conflict.describe() for conflict in plan.duplicates]

        try:
            product_id = await self._upsert_product(plan)
        except PersistenceFailure as exc:
            logger.error("Product %s could not be written: %s", plan.external_id, exc)
            outcome.errors.append(f"Product {plan.external_id}: {exc}")
            self.engine.release(plan.external_id, plan.new_claims)
            return outcome

        outcome.parent_written = True
        self.engine.parent_written(plan.external_id)

        try:
            outcome.content_written = await self._replace_content(product_id, plan)
        except PersistenceFailure as exc:
            outcome.errors.append(f"Content for product {plan.external_id}: {exc}")

        try:
            outcome.images_written = await self._replace_images(product_id, plan)
        except PersistenceFailure as exc:
            outcome.errors.append(f"Images for product {plan.external_id}: {exc}")

        try:
            outcome.variants_written, outcome.released_keys = await self._replace_variants(product_id, plan)
        except PersistenceFailure as exc:
            outcome.errors.append(f"Variants for product {plan.external_id}: {exc}")
            self.engine.release(plan.external_id, plan.new_claims)
            return outcome
        self.engine.release(plan.external_id, outcome.released_keys)

        for variant in plan.writable_variants:
            if variant.price_decision is Decision.SKIP_INCOMPLETE:
                outcome.prices_incomplete += 1
        for variant in plan.priced_variants:
            try:
                await self._replace_price(variant.ean, variant.price)
                outcome.prices_written += 1
            except PersistenceFailure as exc:
                outcome.errors.append(f"Price for EAN {variant.ean}: {exc}")

        logger.info(
            "Product %s written: %s variants, %s images, %s prices",
            plan.external_id, outcome.variants_written, outcome.images_written, outcome.prices_written,
        )
        return outcome

    async def _upsert_product(self, plan: ProductPlan) -> int:
        now = utc_now()
        values = {
            "external_id": plan.external_id,
            "title": plan.title,
            "brand": plan.brand,
            "created_at": now,
            "updated_at": now,
        }
        async with self._transaction(f"product {plan.external_id}"):
            await self.session.execute(
                upsert_statement(self.session, Product, values, ["external_id"], ["title", "brand", "updated_at"])
            )
            product_id = await self.session.scalar(select(Product.id).where(Product.external_id == plan.external_id))
        if product_id is None:
            raise PersistenceFailure(f"product {plan.external_id} has no row after upsert")
        return product_id

    async def _replace_content(self, product_id: int, plan: ProductPlan) -> int:
        async with self._transaction(f"content of product {plan.external_id}"):
            await self.session.execute(
                delete(Content).where(Content.product_id == product_id, Content.locale == self.locale)
            )
            self.session.add(
                Content(
                    product_id=product_id,
                    locale=self.locale,
                    title=plan.title,
                    content=plan.content,
                    description=plan.description,
                )
            )
        return 1

    async def _replace_images(self, product_id: int, plan: ProductPlan) -> int:
        async with self._transaction(f"images of product {plan.external_id}"):
            await self.session.execute(delete(ProductImage).where(ProductImage.product_id == product_id))
            self.session.add_all(
                [ProductImage(product_id=product_id, url=image.url, position=image.position) for image in plan.images]
            )
        return len(plan.images)

    async def _replace_variants(self, product_id: int, plan: ProductPlan) -> tuple[int, list[str]]:
        variants = plan.writable_variants
        new_keys = plan.keys
        async with self._transaction(f"variants of product {plan.external_id}"):
            old_keys = set(
                (
                    await self.session.scalars(
                        select(Variant.ean).where(Variant.product_id == product_id, Variant.ean.is_not(None))
                    )
                ).all()
            )
            stale_keys = sorted(old_keys - new_keys)
            await self.session.execute(delete(Variant).where(Variant.product_id == product_id))
            if stale_keys:
                await self.session.execute(
                    delete(Price).where(Price.ean_reference.in_(stale_keys), Price.country_code == self.country_code)
                )
            self.session.add_all(
                [
                    Variant(
                        product_id=product_id,
                        external_id=variant.external_id,
                        ean=variant.ean,
                        title=variant.title,
                        position=variant.position,
                    )
                    for variant in variants
                ]
            )
        return len(variants), stale_keys

    async def _replace_price(self, ean: str, price: Decimal) -> None:
        async with self._transaction(f"price for EAN {ean}"):
            await self.session.execute(
                delete(Price).where(Price.ean_reference == ean, Price.country_code == self.country_code)
            )
            self.session.add(Price(ean_reference=ean, country_code=self.country_code, price=price))

    def _transaction(self, what: str) -> _StepTransaction:
        return _StepTransaction(self.session, what)


class _StepTransaction:
    """Commit on success; on a driver error roll back and raise ``PersistenceFailure``."""

    def __init__(self, session: AsyncSession, what: str) -> None:
        self.session = session
        self.what = what

    async def __aenter__(self) -> AsyncSession:
        return self.session

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            try:
                await self.session.commit()
                return False
            except SQLAlchemyError as commit_exc:
                exc = commit_exc
        if isinstance(exc, SQLAlchemyError):
            await self.session.rollback()
            logger.error("Write failed for %s: %s", self.what, exc)
            raise PersistenceFailure(f"{exc.__class__.__name__}: {_first_line(exc)}") from exc
        await self.session.rollback()
        return False


class BuypriceWriter:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def clear(self) -> int:
        async with _StepTransaction(self.session, "buyprice table"):
            result = await self.session.execute(delete(BuyPrice))
        logger.info("Cleared %s buy prices", result.rowcount)
        return result.rowcount or 0

    async def insert_batch(self, rows: Sequence[tuple[str, Decimal]]) -> int:
        if not rows:
            return 0
        now = utc_now()
        values = [{"ean_reference": ean, "buyprice": price, "created_at": now} for ean, price in rows]
        async with _StepTransaction(self.session, f"buyprice batch of {len(rows)}"):
            await self.session.execute(upsert_statement(self.session, BuyPrice, values, ["ean_reference"], ["buyprice"]))
        return len(rows)


class VariantLinkWriter:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def clear_buyprices(self) -> int:
        async with _StepTransaction(self.session, "variant buy prices"):
            result = await self.session.execute(
                update(Variant).where(Variant.buyprice.is_not(None)).values(buyprice=None, updated_at=utc_now())
            )
        logger.info("Cleared buy prices on %s variants", result.rowcount)
        return result.rowcount or 0

    async def update_variant(self, variant_id: int, picqer_idproduct: int | None, buyprice: Decimal | None) -> None:
        values: dict[str, object] = {"updated_at": utc_now()}
        if picqer_idproduct is not None:
            values["picqer_idproduct"] = picqer_idproduct
        if buyprice is not None:
            values["buyprice"] = buyprice
        async with _StepTransaction(self.session, f"variant {variant_id}"):
            await self.session.execute(update(Variant).where(Variant.id == variant_id).values(**values))


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else ""
