"""
Bundle workflow routes (JSON).

Handles:
- /api/bundle/eligibility         - Free bundle / subscription allowance
- /api/bundle/pricing             - Price quote for a strategy and size
- /api/bundle/categories          - Category filter options
- /api/bundle/selection[...]      - Start, page, toggle and filter the selection
- /api/bundle/submit              - Create the generation request
- /api/bundle/payment/[...]       - Checkout result from the payment widget
- /api/bundle/status              - Workflow and job status (polled by the page)
- /api/bundle/reset               - Start over after a finished request
- /api/bundle/downloads[...]      - Download history and finished PDFs

The Flask session holds only the workflow id; the workflow objects live in
the WorkflowRegistry. The user's bearer token comes from the Authorization
header of each request.

Every response carries the notices queued since the previous response.
Workflow errors are turned into JSON by the app-level error handler.
"""

import io

import bleach
from flask import (
    Blueprint,
    current_app,
    jsonify,
    request,
    send_file,
    session,
)

from core.exceptions import AuthenticationRequiredError, BundleValidationError
from models.bundle import CustomerDetails, SelectionStrategy
from models.catalog import CatalogFilter
from models.generation_job import DownloadRecord, GenerationJob
from modules.artifact import download_artifact, inspect_pdf
from modules.selection import ToggleOutcome
from services.orchestrator import CheckoutResult
from services.workflow_registry import identity_for_token
from .errors import http_status_for
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

bundle_bp = Blueprint("bundle", __name__, url_prefix="/api/bundle")

DOWNLOADS_PAGE_SIZE = 20


# =============================================================================
# HELPERS
# =============================================================================

def _sanitize_text(text, max_length: int = None) -> str:
    """Sanitize user input text."""
    if not text:
        return ""
    text = str(text).strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def _bearer_token():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _workflow():
    """Workflow of this session, created on first use or when the user changes."""
    registry = current_app.config["WORKFLOW_REGISTRY"]
    token = _bearer_token()

    workflow = registry.get(session.get("workflow_id"))
    if workflow is not None and workflow.identity != identity_for_token(token):
        registry.discard(workflow.workflow_id)
        workflow = None

    if workflow is None:
        workflow = registry.create(token)
        session["workflow_id"] = workflow.workflow_id
        session.modified = True
    return workflow


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _int_or_none(value, field: str):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BundleValidationError(field, f"{field} must be a whole number.") from None


def _bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _catalog_filter(data: dict) -> CatalogFilter:
    max_length = current_app.config.get("MAX_SEARCH_QUERY_LENGTH", 200)
    return CatalogFilter(
        query=_sanitize_text(data.get("query"), max_length),
        category_id=_int_or_none(data.get("category_id"), "category_id"),
    )


def _strategy(value) -> SelectionStrategy:
    try:
        return SelectionStrategy.parse(value or SelectionStrategy.FIRST_N.value)
    except ValueError:
        raise BundleValidationError("mode", f"Unknown selection mode: {value}") from None


def _engine(workflow):
    if workflow.engine is None:
        raise BundleValidationError("selection", "Start a selection first.")
    return workflow.engine


def _respond(workflow, payload: dict, status: int = 200):
    payload["notices"] = [notice.to_dict() for notice in workflow.notifier.drain()]
    return jsonify(payload), status


# =============================================================================
# ENTITLEMENTS & PRICING
# =============================================================================

@bundle_bp.route("/eligibility", methods=["GET"])
def eligibility():
    workflow = _workflow()
    force = _bool(request.args.get("refresh"))
    snapshot = workflow.eligibility.resolve(workflow.identity, force_refresh=force)
    return _respond(workflow, {"eligibility": snapshot.to_dict()})


@bundle_bp.route("/pricing", methods=["GET"])
def pricing():
    """
    Quote a bundle. Signed-out users get paid prices.

    Query: mode, count (defaults to the free-tier size), use_subscription
    """
    workflow = _workflow()
    strategy = _strategy(request.args.get("mode"))
    use_allowance = _bool(request.args.get("use_subscription"))

    is_eligible_free = False
    if workflow.identity:
        snapshot = workflow.eligibility.resolve(workflow.identity)
        is_eligible_free = snapshot.is_free_eligible
        use_allowance = use_allowance and snapshot.has_subscription_allowance

    count = _int_or_none(request.args.get("count"), "count")
    if count is None:
        count = (workflow.quoter.price_table or workflow.quoter.fetch_price_table()).free_tier_size

    quote = workflow.quoter.quote(strategy, count, is_eligible_free, use_allowance)
    return _respond(workflow, {"quote": quote.to_dict()})


@bundle_bp.route("/categories", methods=["GET"])
def categories():
    workflow = _workflow()
    return _respond(workflow, {"categories": [c.to_dict() for c in workflow.catalog.categories()]})


# =============================================================================
# SELECTION
# =============================================================================

@bundle_bp.route("/selection", methods=["POST"])
def start_selection():
    """
    Start (or restart) a selection.

    Body: mode, count, query, category_id, use_subscription_allowance
    """
    workflow = _workflow()
    data = _body()

    use_allowance = _bool(data.get("use_subscription_allowance"))
    strategy = SelectionStrategy.FIRST_N if use_allowance else _strategy(data.get("mode"))

    count = _int_or_none(data.get("count"), "count")
    if count is None:
        count = workflow.quoter.fetch_price_table().free_tier_size

    engine = workflow.start_selection(strategy, count, _catalog_filter(data), use_allowance)
    logger.info(f"Selection started: {strategy.value} x{count}, allowance={use_allowance}")
    return _respond(workflow, {"selection": engine.to_dict()})


@bundle_bp.route("/selection", methods=["GET"])
def get_selection():
    workflow = _workflow()
    return _respond(workflow, {"selection": _engine(workflow).to_dict()})


@bundle_bp.route("/selection/more", methods=["POST"])
def load_more():
    """End of the rendered list became visible."""
    workflow = _workflow()
    engine = _engine(workflow)
    loaded = engine.on_end_reached()
    return _respond(workflow, {"loaded": loaded, "selection": engine.to_dict()})


@bundle_bp.route("/selection/toggle", methods=["POST"])
def toggle():
    workflow = _workflow()
    engine = _engine(workflow)
    product_id = _int_or_none(_body().get("product_id"), "product_id")
    if product_id is None:
        raise BundleValidationError("product_id", "product_id is required.")

    outcome = engine.toggle(product_id)
    if outcome is ToggleOutcome.LIMIT_REACHED:
        workflow.notifier.warning(f"You can select only {engine.required_count} designs.")

    return _respond(workflow, {
        "outcome": outcome.value,
        "chosen_ids": list(engine.chosen_ids),
        "readiness": engine.readiness().to_dict(),
    })


@bundle_bp.route("/selection/filters", methods=["POST"])
def set_filters():
    workflow = _workflow()
    engine = _engine(workflow)
    dropped = engine.set_filters(_catalog_filter(_body()))
    if dropped:
        workflow.notifier.info(
            f"{len(dropped)} selected designs are not in the new results and were removed."
        )
    return _respond(workflow, {"dropped_ids": dropped, "selection": engine.to_dict()})


# =============================================================================
# SUBMISSION & PAYMENT
# =============================================================================

@bundle_bp.route("/submit", methods=["POST"])
def submit():
    """
    Submit the current selection.

    Body: customer_name, customer_contact (required for paid bundles)
    """
    workflow = _workflow()
    engine = _engine(workflow)
    data = _body()

    customer = None
    if data.get("customer_name") or data.get("customer_contact"):
        max_length = current_app.config.get("MAX_CUSTOMER_NAME_LENGTH", 120)
        customer = CustomerDetails.from_input(
            _sanitize_text(data.get("customer_name"), max_length),
            _sanitize_text(data.get("customer_contact"), 32),
        )

    orchestrator = workflow.orchestrator
    orchestrator.submit(engine, customer, workflow.use_subscription_allowance)
    return _respond(workflow, orchestrator.snapshot(), _status_for(orchestrator))


@bundle_bp.route("/payment/confirm", methods=["POST"])
def confirm_payment():
    """Checkout succeeded. Body: razorpay_payment_id, razorpay_signature."""
    workflow = _workflow()
    data = _body()
    result = CheckoutResult.succeeded(
        _sanitize_text(data.get("razorpay_payment_id"), 64),
        _sanitize_text(data.get("razorpay_signature"), 256),
    )
    orchestrator = workflow.orchestrator
    orchestrator.complete_checkout(result)
    return _respond(workflow, orchestrator.snapshot(), _status_for(orchestrator))


@bundle_bp.route("/payment/cancel", methods=["POST"])
def cancel_payment():
    """Checkout dismissed or failed. Body: reason (empty = dismissed)."""
    workflow = _workflow()
    reason = _sanitize_text(_body().get("reason"), 200)
    result = CheckoutResult.failed(reason) if reason else CheckoutResult.user_cancelled()

    orchestrator = workflow.orchestrator
    orchestrator.complete_checkout(result)
    return _respond(workflow, orchestrator.snapshot(), _status_for(orchestrator))


@bundle_bp.route("/status", methods=["GET"])
def status():
    workflow = _workflow()
    return _respond(workflow, workflow.orchestrator.snapshot())


@bundle_bp.route("/reset", methods=["POST"])
def reset():
    workflow = _workflow()
    workflow.orchestrator.reset()
    return _respond(workflow, workflow.orchestrator.snapshot())


def _status_for(orchestrator) -> int:
    error = orchestrator.error
    return http_status_for(error) if error is not None else 200


# =============================================================================
# DOWNLOADS
# =============================================================================

@bundle_bp.route("/downloads", methods=["GET"])
def downloads():
    workflow = _workflow()
    if not workflow.identity:
        raise AuthenticationRequiredError("Please sign in to see your downloads")

    page = _int_or_none(request.args.get("page"), "page") or 1
    client = workflow.api_client

    def load():
        data = client.get_pdf_downloads(page=page, page_size=DOWNLOADS_PAGE_SIZE)
        return [DownloadRecord.from_api(item) for item in data.get("downloads") or []]

    if page == 1:
        cache = current_app.config["WORKFLOW_REGISTRY"].downloads_cache
        records = cache.get(workflow.identity, load)
    else:
        records = load()

    return _respond(workflow, {"page": page, "downloads": [r.to_dict() for r in records]})


@bundle_bp.route("/downloads/<job_id>/file", methods=["GET"])
def download_file(job_id: str):
    workflow = _workflow()
    if not workflow.identity:
        raise AuthenticationRequiredError("Please sign in to download PDFs")

    store = current_app.config["WORKFLOW_REGISTRY"].job_store
    job = store.get(job_id)
    if job is None or not job.is_terminal:
        job = GenerationJob.from_api(job_id, workflow.api_client.get_pdf_status(job_id))

    data = download_artifact(workflow.api_client, job)
    info = inspect_pdf(job_id, data)
    logger.info(f"Serving bundle {job_id}: {info.pages} pages")

    response = send_file(
        io.BytesIO(data),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"mockup-bundle-{job_id}.pdf",
    )
    response.headers["X-Bundle-Pages"] = str(info.pages)
    return response
