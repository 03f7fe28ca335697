"""
Catalog source for the selection engine.

Turns the backend's two listings into CatalogPages:
    - empty filter    -> home feed     {products, page, has_next}
    - any filter set  -> search        {results, current_page, total_pages}

Designs without a mockup image are dropped here, so every id the engine
sees can actually be rendered into the PDF.
"""

from typing import List

from models.catalog import CatalogFilter, CatalogPage, Category, mockup_designs
from logging_config import get_logger


logger = get_logger(__name__)


class CatalogService:
    """Fetches filtered catalog pages through the marketplace API client."""

    def __init__(self, api_client):
        self._api_client = api_client

    def fetch_page(self, catalog_filter: CatalogFilter, page: int = 1) -> CatalogPage:
        if catalog_filter.is_empty:
            data = self._api_client.get_home_feed(page=page)
            raw_products = data.get("products") or []
            page_number = int(data.get("page") or page)
            has_next = bool(data.get("has_next"))
        else:
            data = self._api_client.search_products(
                query=catalog_filter.query,
                category_id=catalog_filter.category_id,
                page=page,
            )
            raw_products = data.get("results") or []
            page_number = int(data.get("current_page") or page)
            has_next = page_number < int(data.get("total_pages") or 0)

        designs = mockup_designs(raw_products)
        logger.debug(
            f"Catalog page {page_number}: {len(designs)}/{len(raw_products)} with mockups, "
            f"has_next={has_next}"
        )
        return CatalogPage(items=tuple(designs), page=page_number, has_next=has_next)

    def categories(self) -> List[Category]:
        return [Category.from_api(item) for item in self._api_client.get_categories()]
