"""
Shared fixtures: an in-memory marketplace backend.

FakeMarketplace implements the MarketplaceAPIClient methods the workflow
uses, records every call, and lets tests script status sequences and
failures.
"""

from decimal import Decimal

import pytest

from core.exceptions import APIError


def make_product(product_id, mockup=True, title=None):
    """Raw product as the catalog endpoints return it."""
    file_name = f"design-{product_id}-mockup.png" if mockup else f"design-{product_id}.png"
    return {
        "id": product_id,
        "title": title or f"Design {product_id}",
        "category": {"name": "Posters"},
        "price": "99.00",
        "media": [{"url": f"https://cdn.example.com/{file_name}", "file_name": file_name}],
    }


PDF_CONFIG = {
    "free_pdf_designs_count": 50,
    "paid_pdf_designs_options": [50, 100, 200, 500],
    "pricing": {"first_n_per_design": "1.00", "selected_per_design": "2.00"},
}


class FakeMarketplace:
    """In-memory stand-in for MarketplaceAPIClient."""

    def __init__(self, product_count=120, page_size=20, authenticated=True):
        self.products = [make_product(i) for i in range(1, product_count + 1)]
        self.search_products_list = None
        self.page_size = page_size
        self.is_authenticated = authenticated

        self.eligibility = {"is_eligible": True, "free_downloads_used": 0}
        self.free_downloads = {"remaining_mock_pdf_downloads": 0}
        self.config = dict(PDF_CONFIG)

        self.job_id = 1842
        self.statuses = ["pending", "processing", "completed"]
        self.create_error = None
        self.order_error = None
        self.capture_error = None
        self.capture_response = {"success": True}
        self.pdf_bytes = b""
        self.downloads = []

        self.calls = []
        self.closed = False

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    def _page(self, items, page):
        start = (page - 1) * self.page_size
        chunk = items[start:start + self.page_size]
        has_next = start + self.page_size < len(items)
        return chunk, has_next

    # Catalog

    def get_home_feed(self, page=1):
        self.calls.append(("get_home_feed", page))
        chunk, has_next = self._page(self.products, page)
        return {"products": chunk, "page": page, "has_next": has_next}

    def search_products(self, query="", category_id=None, page=1):
        self.calls.append(("search_products", (query, category_id, page)))
        items = self.search_products_list if self.search_products_list is not None else self.products
        chunk, has_next = self._page(items, page)
        total_pages = max(1, -(-len(items) // self.page_size))
        return {"results": chunk, "current_page": page, "total_pages": total_pages, "total_count": len(items)}

    def get_categories(self):
        self.calls.append(("get_categories", None))
        return [{"id": 3, "name": "Posters", "product_count": 120}]

    # Entitlements

    def check_pdf_eligibility(self):
        self.calls.append(("check_pdf_eligibility", None))
        return dict(self.eligibility)

    def check_free_downloads(self):
        self.calls.append(("check_free_downloads", None))
        return dict(self.free_downloads)

    def get_pdf_config(self):
        self.calls.append(("get_pdf_config", None))
        return dict(self.config)

    # Generation

    def create_pdf_request(self, payload):
        self.calls.append(("create_pdf_request", payload))
        if self.create_error is not None:
            raise self.create_error
        return {"success": True, "download_id": self.job_id, "status": "pending"}

    def get_pdf_status(self, job_id):
        self.calls.append(("get_pdf_status", job_id))
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        data = {"status": status}
        if status == "failed":
            data["error_message"] = "Renderer crashed"
        return data

    def get_pdf_downloads(self, page=1, page_size=20):
        self.calls.append(("get_pdf_downloads", page))
        return {"downloads": list(self.downloads), "total_downloads": len(self.downloads)}

    def download_pdf(self, job_id):
        self.calls.append(("download_pdf", job_id))
        return self.pdf_bytes

    # Payment

    def create_pdf_payment_order(self, job_id, amount):
        self.calls.append(("create_pdf_payment_order", (job_id, Decimal(amount))))
        if self.order_error is not None:
            raise self.order_error
        return {"razorpay_order_id": "order_abc", "payment_id": 77}

    def capture_pdf_payment(self, payment_id, gateway_payment_id, amount, gateway_signature=""):
        self.calls.append(("capture_pdf_payment", (payment_id, gateway_payment_id, Decimal(amount))))
        if self.capture_error is not None:
            raise self.capture_error
        return dict(self.capture_response)

    def close(self):
        self.closed = True


@pytest.fixture
def backend():
    """Fresh fake backend with 120 mockup designs."""
    return FakeMarketplace()


@pytest.fixture
def bad_request():
    """Factory for a 400 APIError as the client raises it."""
    def _make(message="Free PDF already used"):
        return APIError(message, status_code=400, endpoint="/api/catalog/pdf/create-request/")
    return _make
