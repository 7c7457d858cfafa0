from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from catalog_sync.clients.base import RateLimitedClient
from catalog_sync.clients.schemas import PicqerProduct
from catalog_sync.config import SyncSettings
from catalog_sync.errors import MalformedResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://quality-heating.picqer.com/api/v1"


@dataclass(frozen=True)
class PicqerSearchResult:
    product: PicqerProduct | None
    multiple_results: bool = False
    total_results: int = 0


class PicqerClient(RateLimitedClient):
    upstream_name = "Picqer"

    def __init__(self, api_key: str | None, base_url: str | None = None, **kwargs: Any) -> None:
        # Picqer authenticates with the key as user name and an empty password.
        super().__init__(base_url or DEFAULT_BASE_URL, api_key, "", **kwargs)

    @classmethod
    def from_settings(cls, settings: SyncSettings, **kwargs: Any) -> PicqerClient:
        return cls(
            settings.picqer_api_key,
            settings.picqer_base_url,
            timeout_seconds=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
            **kwargs,
        )

    async def search_by_ean(self, ean: str) -> PicqerSearchResult:
        payload = await self.request("/products", params={"search": ean})
        # The endpoint answers either a bare list or a {"data": [...]} envelope.
        if isinstance(payload, dict):
            payload = payload.get("data")
        if payload is None:
            payload = []
        if not isinstance(payload, list):
            raise MalformedResponse(f"Picqer search for {ean} returned {type(payload).__name__}, expected a list")

        if not payload:
            return PicqerSearchResult(product=None)
        if len(payload) > 1:
            logger.info("Picqer returned %s products for EAN %s, using the first", len(payload), ean)
        return PicqerSearchResult(
            product=self._parse(payload[0], f"search {ean}"),
            multiple_results=len(payload) > 1,
            total_results=len(payload),
        )

    async def get_product(self, product_id: int) -> PicqerProduct:
        payload = await self.request(f"/products/{product_id}")
        return self._parse(payload, f"product {product_id}")

    def _parse(self, payload: Any, context: str) -> PicqerProduct:
        try:
            return PicqerProduct.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponse(f"Picqer {context} returned an unexpected product shape") from exc
