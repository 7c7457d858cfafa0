from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.dml import Insert

from catalog_sync.errors import FatalSetupFailure
from catalog_sync.models import Product, Variant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariantKey:
    id: int
    ean: str
    picqer_idproduct: int | None


def dialect_insert(session: AsyncSession, model: Any) -> Insert:
    """Return an INSERT that supports ``on_conflict_do_update`` on the session's backend."""
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    if dialect == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


def upsert_statement(
    session: AsyncSession,
    model: Any,
    values: dict[str, Any] | Sequence[dict[str, Any]],
    index_elements: Sequence[str],
    update_columns: Sequence[str],
) -> Insert:
    stmt = dialect_insert(session, model).values(values)
    return stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_={column: getattr(stmt.excluded, column) for column in update_columns},
    )


class CatalogStore:
    """Initial reads a sync run needs before it can reconcile anything.

    A failure here means the run has nothing trustworthy to reconcile against, so every read
    raises ``FatalSetupFailure`` instead of the driver error.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def business_key_claims(self) -> dict[str, int | None]:
        rows = await self._fetch(
            select(Variant.ean, Product.external_id)
            .outerjoin(Product, Product.id == Variant.product_id)
            .where(Variant.ean.is_not(None)),
            "existing EANs",
        )
        claims = {ean: external_id for ean, external_id in rows}
        logger.info("Loaded %s existing EAN claims", len(claims))
        return claims

    async def known_parent_ids(self) -> set[int]:
        rows = await self._fetch(select(Product.external_id).where(Product.external_id.is_not(None)), "product ids")
        return {external_id for (external_id,) in rows}

    async def unique_variant_eans(self) -> list[str]:
        rows = await self._fetch(
            select(Variant.ean).where(Variant.ean.is_not(None), Variant.ean != "").distinct().order_by(Variant.ean),
            "variant EANs",
        )
        return [ean for (ean,) in rows]

    async def variants_with_eans(self) -> list[VariantKey]:
        rows = await self._fetch(
            select(Variant.id, Variant.ean, Variant.picqer_idproduct)
            .where(Variant.ean.is_not(None), Variant.ean != "")
            .order_by(Variant.id),
            "variants",
        )
        return [VariantKey(id=variant_id, ean=ean, picqer_idproduct=picqer_id) for variant_id, ean, picqer_id in rows]

    async def warehouse_claims(self) -> dict[str, int]:
        rows = await self._fetch(
            select(Variant.picqer_idproduct, Variant.id).where(Variant.picqer_idproduct.is_not(None)).order_by(Variant.id),
            "Picqer links",
        )
        claims: dict[str, int] = {}
        for picqer_id, variant_id in rows:
            claims.setdefault(str(picqer_id), variant_id)
        return claims

    async def _fetch(self, stmt: Any, what: str) -> list[Any]:
        try:
            result = await self.session.execute(stmt)
            return list(result.all())
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise FatalSetupFailure(f"Failed to load {what}: {exc}") from exc
