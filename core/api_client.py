"""
HTTP client for the marketplace backend.

Thin wrapper around httpx.Client. One client per user session: it carries
the user's bearer token, so it must never be shared between users.

THREAD SAFETY:
    - httpx.Client is safe to use from the request thread and the status
      polling thread of the same workflow
    - Each call returns independent data (no shared state between calls)

ERROR MAPPING:
    - Connection problems / timeouts  -> ServiceUnavailableError
    - 401                              -> AuthenticationRequiredError
    - Any other non-2xx                -> APIError (status, field errors)

Usage:
    client = MarketplaceAPIClient(base_url, access_token=token)

    config = client.get_pdf_config()
    created = client.create_pdf_request(request.to_payload())
    status = client.get_pdf_status(job_id)

    client.close()
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Any, List, Optional

import httpx

from .exceptions import APIError, AuthenticationRequiredError, ServiceUnavailableError


# Field names the backend uses for the overall message, not per-field errors
_MESSAGE_KEYS = ("error", "detail", "message", "non_field_errors")


def extract_error_message(payload: Any) -> str:
    """Best-effort human message from an error body (DRF-style or plain)."""
    if not payload:
        return "An unexpected error occurred"
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        for key in ("error", "detail", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        non_field = payload.get("non_field_errors")
        if isinstance(non_field, list) and non_field:
            return str(non_field[0])
        field_errors = extract_field_errors(payload)
        if field_errors:
            field, messages = next(iter(field_errors.items()))
            return f"{field}: {messages[0]}"
    return "An unexpected error occurred"


def extract_field_errors(payload: Any) -> Dict[str, List[str]]:
    """Per-field validation errors from a DRF error body."""
    if not isinstance(payload, dict):
        return {}
    field_errors: Dict[str, List[str]] = {}
    for key, value in payload.items():
        if key in _MESSAGE_KEYS:
            continue
        if isinstance(value, list):
            field_errors[key] = [str(v) for v in value]
        elif isinstance(value, str):
            field_errors[key] = [value]
    return field_errors


class MarketplaceAPIClient:
    """
    Client for the catalog, entitlement, generation and payment endpoints.

    Attributes:
        base_url: Backend root URL
        is_authenticated: Whether a bearer token is attached
    """

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Backend root URL (e.g. https://api.example.com)
            access_token: User's bearer token (None for anonymous catalog reads)
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (tests pass httpx.MockTransport)
            logger: Logger instance (creates default if not provided)
        """
        if not base_url:
            raise ValueError("base_url is required")

        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        self._access_token = access_token
        self._logger = logger or logging.getLogger("design_bundle_web.core.api_client")
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    @property
    def is_authenticated(self) -> bool:
        return bool(self._access_token)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "MarketplaceAPIClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # CATALOG
    # =========================================================================

    def get_home_feed(self, page: int = 1) -> Dict[str, Any]:
        """Unfiltered product feed: {products, page, has_next}."""
        return self._request("GET", "/api/catalog/home-feed/", params={"page": page})

    def search_products(
        self,
        query: str = "",
        category_id: Optional[int] = None,
        page: int = 1,
    ) -> Dict[str, Any]:
        """Filtered search: {results, current_page, total_pages, total_count}."""
        params: Dict[str, Any] = {"page": page}
        if query:
            params["q"] = query
        if category_id is not None:
            params["category"] = category_id
        return self._request("GET", "/api/catalog/search/", params=params)

    def get_categories(self) -> List[Dict[str, Any]]:
        data = self._request("GET", "/api/catalog/categories/")
        return data.get("categories") or []

    # =========================================================================
    # ENTITLEMENTS
    # =========================================================================

    def check_pdf_eligibility(self) -> Dict[str, Any]:
        """One-time free bundle eligibility: {is_eligible, free_downloads_used, ...}."""
        self._require_auth("/api/catalog/pdf/check-eligibility/")
        return self._request("GET", "/api/catalog/pdf/check-eligibility/")

    def check_free_downloads(self) -> Dict[str, Any]:
        """Subscription allowance: {remaining_mock_pdf_downloads, ...}."""
        self._require_auth("/api/subscriptions/free-downloads/")
        return self._request("GET", "/api/subscriptions/free-downloads/")

    def get_pdf_config(self) -> Dict[str, Any]:
        """Sizes and prices: {free_pdf_designs_count, paid_pdf_designs_options, pricing}."""
        return self._request("GET", "/api/catalog/pdf/config/")

    # =========================================================================
    # GENERATION
    # =========================================================================

    def create_pdf_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._require_auth("/api/catalog/pdf/create-request/")
        return self._request("POST", "/api/catalog/pdf/create-request/", json=payload)

    def get_pdf_status(self, job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/catalog/pdf/status/{job_id}/")

    def get_pdf_downloads(self, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        return self._request(
            "GET",
            "/api/catalog/pdf/downloads/",
            params={"page": page, "page_size": page_size},
        )

    def download_pdf(self, job_id: str) -> bytes:
        """Raw PDF bytes of a completed job."""
        endpoint = f"/api/catalog/pdf/download/{job_id}/"
        response = self._send("GET", endpoint)
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            # The backend answers 200 + JSON when the file is not ready
            payload = response.json()
            raise APIError(extract_error_message(payload), response.status_code, endpoint, payload)
        return response.content

    # =========================================================================
    # PAYMENT
    # =========================================================================

    def create_pdf_payment_order(self, job_id: str, amount: Decimal) -> Dict[str, Any]:
        """Payment order keyed to a generation job: {razorpay_order_id, payment_id}."""
        return self._request(
            "POST",
            "/api/catalog/pdf/payment/create-order/",
            json={"download_id": job_id, "amount": str(amount)},
        )

    def capture_pdf_payment(
        self,
        payment_id: str,
        gateway_payment_id: str,
        amount: Decimal,
        gateway_signature: str = "",
    ) -> Dict[str, Any]:
        body = {
            "payment_id": payment_id,
            "razorpay_payment_id": gateway_payment_id,
            "amount": str(amount),
        }
        if gateway_signature:
            body["razorpay_signature"] = gateway_signature
        return self._request("POST", "/api/catalog/pdf/payment/capture/", json=body)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _require_auth(self, endpoint: str) -> None:
        if not self.is_authenticated:
            raise AuthenticationRequiredError("Please sign in to download PDFs", endpoint=endpoint)

    def _send(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            self._logger.warning(f"{method} {endpoint} timed out: {e}")
            raise ServiceUnavailableError("Request timed out", endpoint=endpoint) from e
        except httpx.TransportError as e:
            self._logger.warning(f"{method} {endpoint} failed: {e}")
            raise ServiceUnavailableError(f"Cannot reach marketplace API: {e}", endpoint=endpoint) from e

        if response.is_success:
            return response

        payload = self._parse_error_body(response)
        message = extract_error_message(payload)
        self._logger.warning(f"{method} {endpoint} -> {response.status_code}: {message}")

        if response.status_code == 401:
            raise AuthenticationRequiredError(message, endpoint=endpoint)
        raise APIError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
            payload=payload,
            field_errors=extract_field_errors(payload),
        )

    def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        response = self._send(method, endpoint, **kwargs)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            self._logger.error(f"{method} {endpoint} returned invalid JSON: {e}")
            raise APIError(
                "Invalid response from server",
                status_code=response.status_code,
                endpoint=endpoint,
            ) from e

    @staticmethod
    def _parse_error_body(response: httpx.Response) -> Any:
        if "application/json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError:
                return {"detail": response.text or response.reason_phrase}
        return {"detail": response.text or response.reason_phrase}
