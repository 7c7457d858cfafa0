from decimal import Decimal

from fakes import enriched, variant
from sqlalchemy import func, select

from catalog_sync.matching.engine import ReconciliationEngine
from catalog_sync.models import Content, Price, Product, ProductImage, Variant
from catalog_sync.report import Outcome
from catalog_sync.writer import CatalogWriter, chunked

IMAGES = [{"id": 1, "src": "https://cdn/a.jpg", "sortOrder": 1}, {"id": 2, "src": "https://cdn/b.jpg", "sortOrder": 2}]


async def _count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


def _writer(session, engine: ReconciliationEngine) -> CatalogWriter:
    return CatalogWriter(session, engine, item_delay_seconds=0)


async def test_apply_writes_product_with_children(session):
    engine = ReconciliationEngine()
    plan = engine.reconcile(
        enriched(1, "Designradiator Oslo", [variant(10, "8712345678906", 249.0), variant(11, None)], images=IMAGES)
    )

    outcome = await _writer(session, engine).apply(plan)

    assert outcome.errors == []
    # Variant 11 has no EAN, so it is written without a price.
    assert outcome.outcome is Outcome.SKIPPED_INCOMPLETE
    assert outcome.prices_incomplete == 1
    assert (outcome.variants_written, outcome.images_written, outcome.prices_written, outcome.content_written) == (2, 2, 1, 1)

    product = await session.scalar(select(Product).where(Product.external_id == 1))
    assert product.title == "Designradiator Oslo"
    assert product.brand == "Thermrad"
    content = await session.scalar(select(Content).where(Content.product_id == product.id))
    assert content.locale == "NL"
    assert content.content == "<p>x</p>"
    price = await session.scalar(select(Price).where(Price.ean_reference == "8712345678906"))
    assert price.country_code == "NL"
    assert price.price == Decimal("249.00")
    assert engine.resolve_parent(1).value == "update"


async def test_reapplying_the_same_plan_is_idempotent(session):
    record = enriched(1, "Radiator", [variant(10, "8712345678906")], images=IMAGES)

    for _ in range(2):
        engine = ReconciliationEngine(claims={"8712345678906": 1} if await _count(session, Variant) else {})
        outcome = await _writer(session, engine).apply(engine.reconcile(record))
        assert outcome.errors == []
        assert outcome.duplicates == []

    assert await _count(session, Product) == 1
    assert await _count(session, Content) == 1
    assert await _count(session, ProductImage) == 2
    assert await _count(session, Variant) == 1
    assert await _count(session, Price) == 1


async def test_dropped_variant_takes_its_price_and_claim_with_it(session):
    engine = ReconciliationEngine()
    writer = _writer(session, engine)
    await writer.apply(engine.reconcile(enriched(1, "Radiator", [variant(10, "1111111111111"), variant(11, "2222222222222")])))
    session.add(Price(ean_reference="2222222222222", country_code="BE", price=Decimal("10.00")))
    session.add(Price(ean_reference="9999999999999", country_code="NL", price=Decimal("5.00")))
    await session.commit()

    outcome = await writer.apply(engine.reconcile(enriched(1, "Radiator", [variant(10, "1111111111111")])))

    assert outcome.released_keys == ["2222222222222"]
    assert engine.owner_of("2222222222222") is None
    eans = set((await session.scalars(select(Variant.ean))).all())
    assert eans == {"1111111111111"}
    prices = set((await session.execute(select(Price.ean_reference, Price.country_code))).all())
    assert prices == {("1111111111111", "NL"), ("2222222222222", "BE"), ("9999999999999", "NL")}


async def test_store_rejection_is_recorded_and_claims_released(session):
    # A variant the engine was not told about already holds the EAN.
    session.add(Variant(ean="8712345678906", title="manual"))
    await session.commit()
    engine = ReconciliationEngine()
    plan = engine.reconcile(enriched(1, "Radiator", [variant(10, "8712345678906")]))

    outcome = await _writer(session, engine).apply(plan)

    assert outcome.parent_written is True
    assert outcome.outcome is Outcome.FAILED
    assert outcome.errors[0].startswith("Variants for product 1:")
    assert outcome.prices_written == 0
    assert engine.owner_of("8712345678906") is None
    assert await _count(session, Product) == 1
    assert await _count(session, Price) == 0


async def test_apply_batch_keeps_going_after_a_failure(session):
    session.add(Variant(ean="3333333333333", title="manual"))
    await session.commit()
    engine = ReconciliationEngine()
    plans = [
        engine.reconcile(enriched(1, "Kapot", [variant(10, "3333333333333")])),
        engine.reconcile(enriched(2, "Heel", [variant(20, "4444444444444")])),
    ]

    outcomes = await _writer(session, engine).apply_batch(plans)

    assert [outcome.outcome for outcome in outcomes] == [Outcome.FAILED, Outcome.SUCCEEDED]
    assert await _count(session, Product) == 2


def test_chunked():
    assert list(chunked(list(range(5)), 2)) == [[0, 1], [2, 3], [4]]
    assert list(chunked([], 50)) == []
