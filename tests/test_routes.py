"""
Integration tests for the bundle JSON API.

The app is built with TestingConfig and a client factory that hands every
workflow the same FakeMarketplace.
"""

import io
import threading

import pytest
from pypdf import PdfWriter

from app import create_app
from core.exceptions import ServiceUnavailableError

from conftest import FakeMarketplace


AUTH = {"Authorization": "Bearer user-token"}


# Fixtures

@pytest.fixture
def backend():
    return FakeMarketplace(page_size=200)


@pytest.fixture
def app(backend):
    app = create_app("config.TestingConfig", client_factory=lambda token: backend)
    yield app
    app.config["WORKFLOW_REGISTRY"].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


def pdf_bytes(pages=3):
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def wait_for_state(client, *states, timeout=5.0):
    """Poll /status the way the page does until one of `states` is reached."""
    pause = threading.Event()
    for _ in range(int(timeout / 0.02)):
        data = client.get("/api/bundle/status", headers=AUTH).get_json()
        if data["state"] in states:
            return data
        pause.wait(0.02)
    raise AssertionError(f"workflow never reached {states}")


def start(client, **body):
    return client.post("/api/bundle/selection", json=body, headers=AUTH)


# Tests for health and errors

class TestService:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["marketplace_api"] == "configured"

    def test_unknown_route_is_json(self, client):
        response = client.get("/api/bundle/nope")
        assert response.status_code == 404
        assert response.get_json()["error"] == "Not Found"


# Tests for entitlements and pricing

class TestEntitlements:

    def test_eligibility(self, client, backend):
        backend.free_downloads = {"remaining_mock_pdf_downloads": 2}
        data = client.get("/api/bundle/eligibility", headers=AUTH).get_json()
        assert data["eligibility"]["is_free_eligible"] is True
        assert data["eligibility"]["subscription_allowance_remaining"] == 2

    def test_eligibility_requires_sign_in(self, client):
        response = client.get("/api/bundle/eligibility")
        assert response.status_code == 401

    def test_pricing_free_tier(self, client):
        data = client.get("/api/bundle/pricing?mode=first_n", headers=AUTH).get_json()
        assert data["quote"]["is_free"] is True
        assert data["quote"]["required_count"] == 50

    def test_pricing_signed_out_is_paid(self, client):
        data = client.get("/api/bundle/pricing?mode=specific&count=100").get_json()
        assert data["quote"]["is_free"] is False
        assert data["quote"]["amount"] == "200.00"

    def test_pricing_bad_count(self, client):
        response = client.get("/api/bundle/pricing?count=lots", headers=AUTH)
        assert response.status_code == 400
        assert response.get_json()["details"]["field"] == "count"

    def test_categories(self, client):
        data = client.get("/api/bundle/categories").get_json()
        assert data["categories"][0]["name"] == "Posters"


# Tests for selection

class TestSelection:

    def test_start_defaults_to_free_tier(self, client):
        data = start(client).get_json()
        selection = data["selection"]
        assert selection["mode"] == "first_n"
        assert selection["required_count"] == 50
        assert selection["readiness"]["ready"] is True

    def test_selection_requires_start(self, client):
        response = client.post("/api/bundle/selection/toggle", json={"product_id": 1}, headers=AUTH)
        assert response.status_code == 400

    def test_toggle_and_limit_notice(self, client):
        start(client, mode="specific", count=50)
        for product_id in range(1, 51):
            client.post("/api/bundle/selection/toggle", json={"product_id": product_id}, headers=AUTH)

        data = client.post("/api/bundle/selection/toggle", json={"product_id": 99}, headers=AUTH).get_json()
        assert data["outcome"] == "limit_reached"
        assert data["readiness"]["ready"] is True
        assert data["notices"][0]["level"] == "warning"

    def test_filter_change_reports_dropped(self, client, backend):
        start(client, mode="specific", count=50)
        client.post("/api/bundle/selection/toggle", json={"product_id": 3}, headers=AUTH)

        backend.search_products_list = []
        data = client.post("/api/bundle/selection/filters", json={"query": "<b>cats</b>"}, headers=AUTH).get_json()

        assert data["dropped_ids"] == [3]
        assert data["selection"]["filters"]["query"] == "cats"
        assert backend.calls[-1] == ("search_products", ("cats", None, 1))

    def test_allowance_forces_first_n(self, client):
        data = start(client, mode="specific", use_subscription_allowance=True).get_json()
        assert data["selection"]["mode"] == "first_n"
        assert data["selection"]["subscription_locked"] is True

    def test_load_more(self, client):
        start(client, mode="specific", count=50)
        data = client.post("/api/bundle/selection/more", headers=AUTH).get_json()
        assert data["loaded"] is False
        assert len(data["selection"]["pool"]) == 120


# Tests for submission and payment

class TestSubmission:

    def test_free_flow(self, client, backend):
        start(client, count=50)
        response = client.post("/api/bundle/submit", json={}, headers=AUTH)
        assert response.status_code == 200

        data = wait_for_state(client, "done")
        assert data["artifact_ref"] == "/api/catalog/pdf/download/1842/"
        assert backend.count("create_pdf_payment_order") == 0

    def test_paid_flow(self, client, backend):
        backend.eligibility = {"is_eligible": False}
        start(client, mode="first_n", count=100)

        data = client.post(
            "/api/bundle/submit",
            json={"customer_name": "Asha", "customer_contact": "98765 43210"},
            headers=AUTH,
        ).get_json()
        assert data["state"] == "awaiting_payment"
        assert data["payment_order"]["amount_minor"] == 10000
        assert data["payment_order"]["order_id"] == "order_abc"

        response = client.post(
            "/api/bundle/payment/confirm",
            json={"razorpay_payment_id": "pay_1", "razorpay_signature": "sig"},
            headers=AUTH,
        )
        assert response.status_code == 200
        assert wait_for_state(client, "done")["state"] == "done"
        assert backend.count("capture_pdf_payment") == 1

        second = client.post("/api/bundle/payment/confirm", json={"razorpay_payment_id": "pay_1"}, headers=AUTH)
        assert second.status_code == 409
        assert backend.count("capture_pdf_payment") == 1

    def test_paid_requires_contact(self, client, backend):
        backend.eligibility = {"is_eligible": False}
        start(client, count=100)

        response = client.post("/api/bundle/submit", json={"customer_name": "Asha"}, headers=AUTH)
        data = response.get_json()
        assert response.status_code == 400
        assert data["state"] == "failed"
        assert data["error"]["details"]["field"] == "customer_contact"

    def test_cancelled_payment(self, client, backend):
        backend.eligibility = {"is_eligible": False}
        start(client, count=100)
        client.post(
            "/api/bundle/submit",
            json={"customer_name": "Asha", "customer_contact": "9876543210"},
            headers=AUTH,
        )

        response = client.post("/api/bundle/payment/cancel", json={}, headers=AUTH)
        assert response.status_code == 422
        assert response.get_json()["state"] == "failed"

        reset = client.post("/api/bundle/reset", headers=AUTH).get_json()
        assert reset["state"] == "idle"

    def test_backend_rejection(self, client, backend, bad_request):
        backend.create_error = bad_request("Free PDF already used")
        start(client)

        response = client.post("/api/bundle/submit", json={}, headers=AUTH)
        assert response.status_code == 422
        assert response.get_json()["error"]["message"] == "Free PDF already used"

    def test_backend_unreachable(self, client, backend):
        def unreachable():
            raise ServiceUnavailableError()

        backend.check_pdf_eligibility = unreachable
        response = client.get("/api/bundle/eligibility", headers=AUTH)
        assert response.status_code == 503


# Tests for downloads

class TestDownloads:

    def test_list_cached_until_job_completes(self, client, backend):
        backend.downloads = [{"download_id": 1, "status": "completed", "total_pages": 50}]

        client.get("/api/bundle/downloads", headers=AUTH)
        client.get("/api/bundle/downloads", headers=AUTH)
        assert backend.count("get_pdf_downloads") == 1

        start(client)
        client.post("/api/bundle/submit", json={}, headers=AUTH)
        wait_for_state(client, "done")

        data = client.get("/api/bundle/downloads", headers=AUTH).get_json()
        assert backend.count("get_pdf_downloads") == 2
        assert data["downloads"][0]["id"] == "1"

    def test_list_requires_sign_in(self, client):
        assert client.get("/api/bundle/downloads").status_code == 401

    def test_download_file(self, client, backend):
        backend.statuses = ["completed"]
        backend.pdf_bytes = pdf_bytes(3)

        response = client.get("/api/bundle/downloads/1842/file", headers=AUTH)
        assert response.status_code == 200
        assert response.mimetype == "application/pdf"
        assert response.headers["X-Bundle-Pages"] == "3"
        assert response.data == backend.pdf_bytes

    def test_download_not_ready(self, client, backend):
        backend.statuses = ["processing"]
        response = client.get("/api/bundle/downloads/1842/file", headers=AUTH)
        assert response.status_code == 409
        assert backend.count("download_pdf") == 0
