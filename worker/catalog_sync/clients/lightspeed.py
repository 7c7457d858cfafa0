from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from catalog_sync.clients.base import RateLimitedClient
from catalog_sync.clients.schemas import (
    LightspeedBrandEnvelope,
    LightspeedImage,
    LightspeedImagesEnvelope,
    LightspeedProduct,
    LightspeedProductsPage,
    LightspeedVariant,
    LightspeedVariantsEnvelope,
    ResourceLink,
)
from catalog_sync.config import SyncSettings
from catalog_sync.errors import FatalSetupFailure, MalformedResponse, UpstreamError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_BASE_URL = "https://api.webshopapp.com/{language}"


@dataclass
class EnrichedProduct:
    product: LightspeedProduct
    brand: str | None = None
    images: list[LightspeedImage] = field(default_factory=list)
    variants: list[LightspeedVariant] = field(default_factory=list)

    @property
    def external_id(self) -> int:
        return self.product.id

    @property
    def title(self) -> str | None:
        return self.product.title


class LightspeedClient(RateLimitedClient):
    upstream_name = "Lightspeed"

    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        language: str = "nl",
        base_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        if not api_secret:
            raise FatalSetupFailure("Lightspeed API secret is not configured")
        super().__init__(base_url or DEFAULT_BASE_URL.format(language=language), api_key, api_secret, **kwargs)

    @classmethod
    def from_settings(cls, settings: SyncSettings, **kwargs: Any) -> LightspeedClient:
        return cls(
            settings.lightspeed_api_key,
            settings.lightspeed_api_secret,
            language=settings.lightspeed_language,
            base_url=settings.lightspeed_base_url,
            timeout_seconds=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
            **kwargs,
        )

    async def get_products(self, page: int = 1, limit: int = 250, since_id: int | None = None) -> list[LightspeedProduct]:
        params: dict[str, Any] = {"limit": limit, "page": page}
        if since_id is not None:
            params["since_id"] = since_id
        payload = await self.request("/products.json", params=params)
        return self._parse(LightspeedProductsPage, payload, "/products.json").products

    async def get_product(self, product_id: int) -> LightspeedProduct:
        endpoint = f"/products/{product_id}.json"
        payload = await self.request(endpoint)
        if not isinstance(payload, dict) or "product" not in payload:
            raise MalformedResponse(f"Lightspeed {endpoint} response has no product")
        return self._parse(LightspeedProduct, payload["product"], endpoint)

    async def get_brand(self, link: str) -> str | None:
        payload = await self.request(link)
        envelope = self._parse(LightspeedBrandEnvelope, payload or {}, link)
        return envelope.brand.title if envelope.brand else None

    async def get_images(self, link: str) -> list[LightspeedImage]:
        payload = await self.request(link)
        return self._parse(LightspeedImagesEnvelope, payload, link).product_images

    async def get_variants(self, link: str) -> list[LightspeedVariant]:
        payload = await self.request(link)
        return self._parse(LightspeedVariantsEnvelope, payload, link).variants

    async def get_variants_by_ean(self, ean: str) -> list[LightspeedVariant]:
        payload = await self.request("/variants.json", params={"ean": ean})
        return self._parse(LightspeedVariantsEnvelope, payload, "/variants.json").variants

    async def enrich(self, product: LightspeedProduct) -> EnrichedProduct:
        """Follow the nested resource links of a listed product.

        A missing brand only costs the brand name, so its failures are logged and swallowed.
        Image and variant failures propagate: the writer replaces those collections wholesale
        and must never do so from a partial fetch.
        """
        enriched = EnrichedProduct(product=product)

        brand_link = _href(product.brand)
        if brand_link:
            try:
                enriched.brand = await self.get_brand(brand_link)
            except UpstreamError as exc:
                logger.warning("Could not fetch brand for product %s: %s", product.id, exc)

        images_link = _href(product.images)
        if images_link:
            enriched.images = await self.get_images(images_link)

        variants_link = _href(product.variants)
        if variants_link:
            enriched.variants = await self.get_variants(variants_link)

        logger.debug(
            "Enriched product %s: brand=%s images=%s variants=%s",
            product.id, enriched.brand, len(enriched.images), len(enriched.variants),
        )
        return enriched

    def _parse(self, model: type[ModelT], payload: Any, endpoint: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponse(
                f"Lightspeed {endpoint} returned an unexpected shape: {exc.error_count()} validation errors"
            ) from exc


def _href(link: ResourceLink | None) -> str | None:
    return link.href() if link else None
