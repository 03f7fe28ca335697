"""
Request orchestrator: one bundle request from selection to finished PDF.

State machine (single in-flight request):

    IDLE -> SUBMITTING -> [AWAITING_PAYMENT -> CAPTURING] -> POLLING -> DONE
                 |               |                |              |-> FAILED
                 v               v                v              '-> STALLED
               FAILED          FAILED           FAILED

    - Free bundles skip the payment states
    - submit() is accepted only from IDLE or FAILED (double-submit guard)
    - reset() returns a terminal workflow to IDLE

Errors never escape as crashes: every DesignBundleError raised inside a
step is recorded on the workflow (error), the state becomes FAILED and
the notifier gets the user message. Anything else raised while submitting
is logged and recorded as a SubmissionError or PaymentError. Only
WorkflowStateError (a call that is not allowed in the current state) is
raised to the caller.

Payment:
    submit() creates the generation job, then a payment order keyed to it,
    and returns a PaymentOrder for the external checkout. The checkout
    result comes back through complete_checkout(), which captures exactly
    once. A capture failure is written to the reconciliation log: the
    customer may have paid for a PDF that will not be produced.

Usage:
    orchestrator = RequestOrchestrator(api_client, resolver, quoter, identity)

    order = orchestrator.submit(engine, customer)
    if order is not None:
        orchestrator.complete_checkout(CheckoutResult.succeeded("pay_123"))

    snapshot = orchestrator.snapshot()
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Any, Optional

from core.exceptions import (
    AuthenticationRequiredError,
    BundleValidationError,
    CaptureError,
    DesignBundleError,
    PaymentError,
    SubmissionError,
    WorkflowStateError,
)
from models.bundle import BundleRequest, CustomerDetails, SelectionStrategy
from models.generation_job import GenerationJob, extract_job_id
from modules.eligibility import EligibilityResolver
from modules.notifications import LoggingNotifier, Notifier
from modules.pricing import PriceQuoter, to_minor_units
from modules.selection import SelectionEngine
from services.job_tracker import DownloadsCache, JobStatusStore, JobStatusTracker, TrackerOutcome
from logging_config import get_logger, get_reconciliation_logger


logger = get_logger(__name__)


class OrchestratorState(Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    AWAITING_PAYMENT = "awaiting_payment"
    CAPTURING = "capturing"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"
    STALLED = "stalled"
    """Polling gave up before the job finished; it may still complete."""

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def accepts_submit(self) -> bool:
        return self in (OrchestratorState.IDLE, OrchestratorState.FAILED)


_TERMINAL_STATES = frozenset({OrchestratorState.DONE, OrchestratorState.FAILED, OrchestratorState.STALLED})


@dataclass(frozen=True)
class OrchestratorSettings:
    """Tunables, normally taken from the Flask config."""

    poll_interval: float = 3.0
    max_poll_attempts: int = 100
    currency: str = "INR"
    payment_key_id: str = ""
    merchant_name: str = "WeDesign"

    @classmethod
    def from_config(cls, config) -> "OrchestratorSettings":
        return cls(
            poll_interval=float(config.get("JOB_POLL_INTERVAL_SECONDS", 3.0)),
            max_poll_attempts=int(config.get("JOB_POLL_MAX_ATTEMPTS", 100)),
            currency=config.get("PAYMENT_CURRENCY", "INR"),
            payment_key_id=config.get("PAYMENT_GATEWAY_KEY_ID", ""),
            merchant_name=config.get("PAYMENT_MERCHANT_NAME", "WeDesign"),
        )


@dataclass(frozen=True)
class PaymentOrder:
    """Everything the external checkout widget needs."""

    job_id: str
    payment_id: str
    """Backend payment record id."""
    gateway_order_id: str
    amount: Decimal
    amount_minor: int
    """Amount in paise."""
    currency: str
    key_id: str
    description: str
    merchant_name: str = ""
    customer: Optional[CustomerDetails] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "job_id": self.job_id,
            "payment_id": self.payment_id,
            "order_id": self.gateway_order_id,
            "amount": str(self.amount),
            "amount_minor": self.amount_minor,
            "currency": self.currency,
            "key": self.key_id,
            "name": self.merchant_name,
            "description": self.description,
        }
        if self.customer is not None:
            data["prefill"] = {"name": self.customer.name, "contact": self.customer.contact}
        return data


@dataclass(frozen=True)
class CheckoutResult:
    """What the checkout widget reported."""

    success: bool
    gateway_payment_id: str = ""
    gateway_signature: str = ""
    cancelled: bool = False
    error_message: str = ""

    @classmethod
    def succeeded(cls, gateway_payment_id: str, gateway_signature: str = "") -> "CheckoutResult":
        return cls(success=True, gateway_payment_id=gateway_payment_id, gateway_signature=gateway_signature)

    @classmethod
    def user_cancelled(cls) -> "CheckoutResult":
        return cls(success=False, cancelled=True)

    @classmethod
    def failed(cls, error_message: str) -> "CheckoutResult":
        return cls(success=False, error_message=error_message)


class RequestOrchestrator:
    """
    Drives a single bundle request through the state machine.

    Attributes:
        state: Current OrchestratorState
        request: BundleRequest being processed (None before submit)
        payment_order: Open PaymentOrder (paid bundles only)
        error: DesignBundleError that moved the workflow to FAILED
        tracker: JobStatusTracker once polling started
    """

    def __init__(
        self,
        api_client,
        eligibility: EligibilityResolver,
        quoter: PriceQuoter,
        identity: str,
        notifier: Optional[Notifier] = None,
        settings: Optional[OrchestratorSettings] = None,
        job_store: Optional[JobStatusStore] = None,
        downloads_cache: Optional[DownloadsCache] = None,
    ):
        self._api_client = api_client
        self._eligibility = eligibility
        self._quoter = quoter
        self._identity = identity
        self._notifier = notifier or LoggingNotifier()
        self._settings = settings or OrchestratorSettings()
        self._job_store = job_store
        self._downloads_cache = downloads_cache

        self._lock = threading.RLock()
        self._state = OrchestratorState.IDLE
        self._request: Optional[BundleRequest] = None
        self._job_id: Optional[str] = None
        self._payment_order: Optional[PaymentOrder] = None
        self._error: Optional[DesignBundleError] = None
        self._tracker: Optional[JobStatusTracker] = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def request(self) -> Optional[BundleRequest]:
        return self._request

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    @property
    def payment_order(self) -> Optional[PaymentOrder]:
        return self._payment_order

    @property
    def error(self) -> Optional[DesignBundleError]:
        return self._error

    @property
    def tracker(self) -> Optional[JobStatusTracker]:
        return self._tracker

    @property
    def job(self) -> Optional[GenerationJob]:
        if self._tracker is not None:
            return self._tracker.job
        if self._job_id and self._job_store is not None:
            return self._job_store.get(self._job_id)
        return None

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def prepare(
        self,
        engine: SelectionEngine,
        customer: Optional[CustomerDetails] = None,
        use_subscription_allowance: bool = False,
    ) -> BundleRequest:
        """
        Build the BundleRequest without submitting anything.

        Local checks run first. Eligibility is then re-read from the backend
        (never served from cache) and the price is quoted, since both decide
        whether the customer fields are required.

        Raises:
            BundleValidationError: Names the violated field
        """
        strategy = engine.mode
        required_count = engine.required_count

        if use_subscription_allowance and strategy is not SelectionStrategy.FIRST_N:
            raise BundleValidationError(
                "subscription_allowance",
                "Subscription downloads are only available for first-N bundles.",
            )

        product_ids = engine.capture()

        try:
            snapshot = self._eligibility.resolve(self._identity, force_refresh=True)
        except AuthenticationRequiredError as e:
            raise BundleValidationError("authentication", "Please sign in to download PDFs.") from e

        if use_subscription_allowance and not snapshot.has_subscription_allowance:
            raise BundleValidationError(
                "subscription_allowance",
                "You have no subscription downloads remaining.",
            )

        quote = self._quoter.quote(
            strategy, required_count, snapshot.is_free_eligible, use_subscription_allowance
        )
        table = quote.price_table

        if not table.is_allowed_size(required_count):
            sizes = ", ".join(str(size) for size in table.allowed_sizes)
            raise BundleValidationError(
                "required_count",
                f"Bundle size {required_count} is not offered. Choose one of: {sizes}.",
            )

        if use_subscription_allowance and not quote.is_free:
            raise BundleValidationError(
                "subscription_allowance",
                f"Subscription downloads cover {table.free_tier_size}-design bundles only.",
            )

        if not quote.is_free:
            _validate_customer(customer)

        return BundleRequest(
            strategy=strategy,
            required_count=required_count,
            product_ids=product_ids,
            is_free=quote.is_free,
            amount=quote.amount,
            use_subscription_allowance=use_subscription_allowance,
            customer=None if quote.is_free else customer,
            search_filters=engine.catalog_filter,
        )

    # =========================================================================
    # STEPS
    # =========================================================================

    def submit(
        self,
        engine: SelectionEngine,
        customer: Optional[CustomerDetails] = None,
        use_subscription_allowance: bool = False,
    ) -> Optional[PaymentOrder]:
        """
        Validate and create the generation request.

        Returns:
            PaymentOrder for a paid bundle (state AWAITING_PAYMENT), None
            otherwise (state POLLING for a free bundle, FAILED on error)

        Raises:
            WorkflowStateError: A request is already in flight
        """
        with self._lock:
            if not self._state.accepts_submit:
                raise WorkflowStateError("submit", self._state.value)
            self._clear()
            self._state = OrchestratorState.SUBMITTING

        try:
            request = self.prepare(engine, customer, use_subscription_allowance)
            with self._lock:
                self._request = request
            job_id = self._create_generation_request(request)
        except DesignBundleError as e:
            self._fail(e)
            return None
        except Exception as e:
            logger.exception(f"Unexpected error while submitting: {e}")
            self._fail(SubmissionError(
                "Could not submit your PDF request. Please try again.",
                {"cause": type(e).__name__},
            ))
            return None

        self._eligibility.invalidate(self._identity)

        if request.is_free:
            self._notifier.success("Your PDF request was submitted. Generating now...")
            self._start_polling(job_id)
            return None

        with self._lock:
            self._state = OrchestratorState.AWAITING_PAYMENT
        try:
            order = self._create_payment_order(job_id, request)
        except DesignBundleError as e:
            self._fail(e)
            return None
        except Exception as e:
            logger.exception(f"Unexpected error while creating payment order: {e}")
            self._fail(PaymentError("Could not start payment. Please try again.", job_id=job_id))
            return None

        with self._lock:
            self._payment_order = order
        self._notifier.info(f"Complete the payment of {order.currency} {order.amount} to generate your PDF.")
        return order

    def complete_checkout(self, result: CheckoutResult) -> bool:
        """
        Handle the checkout outcome; capture the payment on success.

        Returns:
            True when capture succeeded and polling started

        Raises:
            WorkflowStateError: No payment is awaited (including a second
                callback for the same checkout)
        """
        with self._lock:
            if self._state is not OrchestratorState.AWAITING_PAYMENT:
                raise WorkflowStateError("confirm payment", self._state.value)
            order = self._payment_order
            if order is None:
                raise WorkflowStateError("confirm payment", self._state.value)

            rejection = _checkout_rejection(result, order.job_id)
            if rejection is None:
                self._state = OrchestratorState.CAPTURING
            else:
                self._state = OrchestratorState.FAILED
                self._error = rejection

        if rejection is not None:
            self._fail(rejection)
            return False

        try:
            self._capture(order, result)
        except CaptureError as e:
            get_reconciliation_logger().error(
                f"Capture failed: job={e.job_id} payment={e.payment_id} "
                f"gateway_payment={e.gateway_payment_id} amount={order.amount} "
                f"{order.currency} reason={e.message}"
            )
            self._fail(e)
            return False

        self._notifier.success("Payment successful! Generating your PDF...")
        self._start_polling(order.job_id)
        return True

    def run(
        self,
        engine: SelectionEngine,
        customer: Optional[CustomerDetails],
        checkout: Callable[[PaymentOrder], CheckoutResult],
        use_subscription_allowance: bool = False,
        timeout: Optional[float] = None,
    ) -> OrchestratorState:
        """
        Drive the whole workflow from the calling thread.

        Args:
            checkout: Called with the PaymentOrder of a paid bundle; returns
                what the payment gateway reported
            timeout: Max seconds to wait for polling to end

        Returns:
            State reached (DONE, FAILED or STALLED; POLLING if `timeout` hit)
        """
        order = self.submit(engine, customer, use_subscription_allowance)
        if order is not None:
            self.complete_checkout(checkout(order))

        tracker = self._tracker
        if tracker is not None and self._state is OrchestratorState.POLLING:
            tracker.wait(timeout)
        return self._state

    def reset(self) -> None:
        """Back to IDLE from a terminal state (or IDLE itself)."""
        with self._lock:
            if self._state is not OrchestratorState.IDLE and not self._state.is_terminal:
                raise WorkflowStateError("reset", self._state.value)
            self._clear()
            self._state = OrchestratorState.IDLE

    def close(self) -> None:
        """Stop any polling and drop the job from the shared store; the hosting view is going away."""
        tracker = self._tracker
        if tracker is not None:
            tracker.stop()
        with self._lock:
            self._release_job()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            job = self.job
            return {
                "state": self._state.value,
                "job_id": self._job_id,
                "request": self._request.to_dict() if self._request else None,
                "payment_order": self._payment_order.to_dict() if self._payment_order else None,
                "job": job.to_dict() if job else None,
                "artifact_ref": job.artifact_ref if job else None,
                "error": self._error.to_dict() if self._error else None,
            }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _create_generation_request(self, request: BundleRequest) -> str:
        try:
            data = self._api_client.create_pdf_request(request.to_payload())
        except DesignBundleError as e:
            raise SubmissionError(e.user_message, {"cause": type(e).__name__, **e.details}) from e

        job_id = extract_job_id(data)
        if job_id is None:
            raise SubmissionError("Server did not return a request id.", {"response": data})

        with self._lock:
            self._job_id = job_id
        logger.info(
            f"Created {request.download_type} request {job_id}: "
            f"{request.strategy.value} x{request.required_count}"
        )
        return job_id

    def _create_payment_order(self, job_id: str, request: BundleRequest) -> PaymentOrder:
        try:
            data = self._api_client.create_pdf_payment_order(job_id, request.amount)
        except DesignBundleError as e:
            raise PaymentError(f"Could not start payment: {e.user_message}", job_id=job_id) from e

        gateway_order_id = data.get("razorpay_order_id") or data.get("order_id")
        payment_id = data.get("payment_id")
        if not gateway_order_id or not payment_id:
            raise PaymentError("Could not start payment: incomplete order response.", job_id=job_id)

        return PaymentOrder(
            job_id=job_id,
            payment_id=str(payment_id),
            gateway_order_id=str(gateway_order_id),
            amount=request.amount,
            amount_minor=to_minor_units(request.amount),
            currency=data.get("currency") or self._settings.currency,
            key_id=data.get("key_id") or self._settings.payment_key_id,
            description=f"PDF bundle of {request.required_count} designs",
            merchant_name=self._settings.merchant_name,
            customer=request.customer,
        )

    def _capture(self, order: PaymentOrder, result: CheckoutResult) -> None:
        try:
            data = self._api_client.capture_pdf_payment(
                order.payment_id,
                result.gateway_payment_id,
                order.amount,
                result.gateway_signature,
            )
        except DesignBundleError as e:
            raise CaptureError(
                e.message,
                job_id=order.job_id,
                payment_id=order.payment_id,
                gateway_payment_id=result.gateway_payment_id,
                details={"cause": type(e).__name__, **e.details},
            ) from e

        if data.get("success") is False:
            raise CaptureError(
                data.get("error") or data.get("message") or "verification failed",
                job_id=order.job_id,
                payment_id=order.payment_id,
                gateway_payment_id=result.gateway_payment_id,
            )
        logger.info(f"Captured payment {order.payment_id} for job {order.job_id}")

    def _start_polling(self, job_id: str) -> None:
        tracker = JobStatusTracker(
            self._api_client,
            job_id,
            poll_interval=self._settings.poll_interval,
            max_attempts=self._settings.max_poll_attempts,
            store=self._job_store,
            downloads_cache=self._downloads_cache,
            on_finish=self._on_tracker_finished,
        )
        with self._lock:
            self._tracker = tracker
            self._state = OrchestratorState.POLLING
        tracker.start()

    def _on_tracker_finished(self, tracker: JobStatusTracker) -> None:
        with self._lock:
            # A reset may have replaced the tracker in the meantime
            if tracker is not self._tracker or self._state is not OrchestratorState.POLLING:
                return
            outcome = tracker.outcome
            if outcome is TrackerOutcome.COMPLETED:
                self._state = OrchestratorState.DONE
            elif outcome is TrackerOutcome.FAILED:
                self._state = OrchestratorState.FAILED
                self._error = tracker.error
            elif outcome is TrackerOutcome.TIMED_OUT:
                self._state = OrchestratorState.STALLED
            else:
                return

        if outcome is TrackerOutcome.COMPLETED:
            self._notifier.success("Your PDF is ready to download.")
        elif outcome is TrackerOutcome.FAILED:
            self._notifier.error(self._error.user_message)
        else:
            self._notifier.warning(
                "PDF generation is taking longer than expected. "
                "Check My Downloads later."
            )

    def _fail(self, error: DesignBundleError) -> None:
        with self._lock:
            self._state = OrchestratorState.FAILED
            self._error = error

        if isinstance(error, BundleValidationError):
            logger.info(f"Validation failed ({error.field}): {error.message}")
        elif not isinstance(error, CaptureError):
            logger.warning(f"Workflow failed: {error}")
        self._notifier.error(error.user_message)

    def _release_job(self) -> None:
        if self._tracker is not None:
            self._tracker.stop()
        if self._job_store is not None and self._job_id is not None:
            self._job_store.discard(self._job_id)

    def _clear(self) -> None:
        self._release_job()
        self._request = None
        self._job_id = None
        self._payment_order = None
        self._error = None
        self._tracker = None


def _checkout_rejection(result: CheckoutResult, job_id: str) -> Optional[PaymentError]:
    if result.cancelled:
        return PaymentError("Payment was cancelled. No PDF will be generated.", job_id=job_id)
    if not result.success:
        return PaymentError(f"Payment failed: {result.error_message or 'unknown error'}", job_id=job_id)
    if not result.gateway_payment_id:
        return PaymentError("Checkout returned no payment reference.", job_id=job_id)
    return None


def _validate_customer(customer: Optional[CustomerDetails]) -> None:
    if customer is None or not customer.name:
        raise BundleValidationError("customer_name", "Please enter your name.")
    if not customer.contact:
        raise BundleValidationError("customer_contact", "Please enter your mobile number.")
    if not customer.has_valid_contact:
        raise BundleValidationError(
            "customer_contact",
            "Please enter a valid 10-digit mobile number.",
            {"digits": len(customer.contact)},
        )
