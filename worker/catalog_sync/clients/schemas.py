"""Upstream payload shapes, validated where they enter the pipeline.

Lightspeed answers ``false`` instead of omitting a nested resource it does not have, and
reports list endpoints under keys that differ per resource (``productImages`` vs ``variants``).
Both quirks are normalised here so the rest of the pipeline only sees optional fields.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from catalog_sync.matching.normalization import normalize_ean


class UpstreamModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ResourceRef(UpstreamModel):
    id: int | None = None
    url: str | None = None
    link: str | None = None


class ResourceLink(UpstreamModel):
    resource: ResourceRef

    def href(self) -> str | None:
        if self.resource.link:
            return self.resource.link
        if self.resource.url:
            return f"{self.resource.url}.json"
        return None


def _false_to_none(value: Any) -> Any:
    if value is False or value == "":
        return None
    return value


class LightspeedProduct(UpstreamModel):
    id: int
    title: str | None = None
    description: str | None = None
    content: str | None = None
    brand: ResourceLink | None = None
    images: ResourceLink | None = None
    variants: ResourceLink | None = None

    @field_validator("brand", "images", "variants", "title", "description", "content", mode="before")
    @classmethod
    def _absent_resource(cls, value: Any) -> Any:
        return _false_to_none(value)


class LightspeedBrand(UpstreamModel):
    id: int
    title: str | None = None


class LightspeedImage(UpstreamModel):
    id: int
    src: str
    title: str | None = None
    sort_order: int | None = Field(default=None, alias="sortOrder")


class LightspeedVariant(UpstreamModel):
    id: int
    title: str | None = None
    ean: str | None = None
    sku: str | None = None
    article_code: str | None = Field(default=None, alias="articleCode")
    sort_order: int | None = Field(default=None, alias="sortOrder")
    price_incl: float | None = Field(default=None, alias="priceIncl")
    price_excl: float | None = Field(default=None, alias="priceExcl")
    price_cost: float | None = Field(default=None, alias="priceCost")

    @field_validator("ean", mode="before")
    @classmethod
    def _clean_ean(cls, value: Any) -> str | None:
        return normalize_ean(_false_to_none(value))


class LightspeedProductsPage(UpstreamModel):
    products: list[LightspeedProduct]

    @field_validator("products", mode="before")
    @classmethod
    def _absent_products(cls, value: Any) -> Any:
        return _false_to_none(value) or []


class LightspeedBrandEnvelope(UpstreamModel):
    brand: LightspeedBrand | None = None

    @field_validator("brand", mode="before")
    @classmethod
    def _absent_brand(cls, value: Any) -> Any:
        return _false_to_none(value)


class LightspeedImagesEnvelope(UpstreamModel):
    product_images: list[LightspeedImage] = Field(alias="productImages")

    @field_validator("product_images", mode="before")
    @classmethod
    def _absent_images(cls, value: Any) -> Any:
        return _false_to_none(value) or []


class LightspeedVariantsEnvelope(UpstreamModel):
    variants: list[LightspeedVariant]

    @field_validator("variants", mode="before")
    @classmethod
    def _absent_variants(cls, value: Any) -> Any:
        return _false_to_none(value) or []


class PicqerProduct(UpstreamModel):
    idproduct: int
    productcode: str | None = None
    name: str | None = None
    price: float | None = None
    fixedstockprice: float | None = None
    barcode: str | None = None
