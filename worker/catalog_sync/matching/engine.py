from __future__ import annotations

import logging
from collections.abc import Hashable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from catalog_sync.clients.lightspeed import EnrichedProduct
from catalog_sync.clients.schemas import LightspeedVariant
from catalog_sync.errors import BusinessKeyConflict
from catalog_sync.matching.normalization import normalize_price

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP_DUPLICATE = "skip_duplicate"
    SKIP_INCOMPLETE = "skip_incomplete"

    @property
    def writes(self) -> bool:
        return self in (Decision.CREATE, Decision.UPDATE)


@dataclass
class ImagePlan:
    url: str
    position: int


@dataclass
class VariantPlan:
    external_id: int
    title: str | None
    ean: str | None
    position: int | None
    decision: Decision
    price: Decimal | None = None
    price_decision: Decision = Decision.SKIP_INCOMPLETE
    conflict: BusinessKeyConflict | None = None


@dataclass
class ProductPlan:
    external_id: int
    title: str | None
    brand: str | None
    decision: Decision
    content: str | None = None
    description: str | None = None
    images: list[ImagePlan] = field(default_factory=list)
    variants: list[VariantPlan] = field(default_factory=list)
    # Keys this plan claimed for the first time; released again if the parent write fails.
    new_claims: list[str] = field(default_factory=list)

    @property
    def writable_variants(self) -> list[VariantPlan]:
        return [variant for variant in self.variants if variant.decision.writes]

    @property
    def duplicates(self) -> list[BusinessKeyConflict]:
        return [variant.conflict for variant in self.variants if variant.conflict is not None]

    @property
    def priced_variants(self) -> list[VariantPlan]:
        return [variant for variant in self.writable_variants if variant.price_decision.writes]

    @property
    def keys(self) -> set[str]:
        return {variant.ean for variant in self.writable_variants if variant.ean}


class ReconciliationEngine:
    """Resolve upstream records against the catalog and decide what may be written.

    ``claims`` maps every business key already in the store to its owner (the external id of the
    owning parent, or ``None`` for rows no upstream record owns). The map is updated as the run
    proceeds, so two upstream records competing for the same key resolve first-wins in processing
    order, and a key held by a different owner is never reassigned.
    """

    def __init__(self, claims: dict[str, Hashable | None] | None = None, known_parents: Iterable[Hashable] = ()) -> None:
        self.claims: dict[str, Hashable | None] = dict(claims or {})
        self.known_parents = set(known_parents)

    def resolve_parent(self, external_id: Hashable) -> Decision:
        return Decision.UPDATE if external_id in self.known_parents else Decision.CREATE

    def parent_written(self, external_id: Hashable) -> None:
        self.known_parents.add(external_id)

    def owner_of(self, key: str) -> Hashable | None:
        return self.claims.get(key)

    def claim(self, key: str, owner: Hashable) -> Decision:
        if key not in self.claims:
            self.claims[key] = owner
            return Decision.CREATE
        if self.claims[key] == owner:
            return Decision.UPDATE
        return Decision.SKIP_DUPLICATE

    def release(self, owner: Hashable, keys: Iterable[str]) -> None:
        for key in keys:
            if key in self.claims and self.claims[key] == owner:
                del self.claims[key]

    def reconcile(self, record: EnrichedProduct) -> ProductPlan:
        owner = record.external_id
        plan = ProductPlan(
            external_id=owner,
            title=record.title,
            brand=record.brand,
            decision=self.resolve_parent(owner),
            content=record.product.content,
            description=record.product.description,
            images=[
                ImagePlan(url=image.src, position=image.sort_order or index)
                for index, image in enumerate(record.images)
                if image.src
            ],
        )

        seen: set[str] = set()
        for variant in record.variants:
            plan.variants.append(self._reconcile_variant(variant, plan, seen))

        logger.debug(
            "Reconciled product %s: %s, %s writable variants, %s duplicates",
            owner, plan.decision.value, len(plan.writable_variants), len(plan.duplicates),
        )
        return plan

    def _reconcile_variant(self, variant: LightspeedVariant, plan: ProductPlan, seen: set[str]) -> VariantPlan:
        ean = variant.ean
        vplan = VariantPlan(
            external_id=variant.id,
            title=variant.title,
            ean=ean,
            position=variant.sort_order or None,
            decision=Decision.CREATE,
        )

        if ean is None:
            # The variant itself is still written; only its price depends on the key.
            return vplan

        if ean in seen:
            vplan.decision = Decision.SKIP_DUPLICATE
            vplan.conflict = BusinessKeyConflict(ean, f"product {plan.external_id}", f"variant {variant.id}", plan.title)
            return vplan

        decision = self.claim(ean, plan.external_id)
        if decision is Decision.SKIP_DUPLICATE:
            vplan.decision = decision
            vplan.conflict = BusinessKeyConflict(ean, _describe_owner(self.owner_of(ean)), f"variant {variant.id}", plan.title)
            return vplan

        seen.add(ean)
        if decision is Decision.CREATE:
            plan.new_claims.append(ean)
        vplan.decision = decision
        vplan.price = normalize_price(variant.price_incl)
        vplan.price_decision = Decision.UPDATE if vplan.price is not None else Decision.SKIP_INCOMPLETE
        return vplan


def _describe_owner(owner: Hashable | None) -> str:
    return f"product {owner}" if owner is not None else "an existing variant"

