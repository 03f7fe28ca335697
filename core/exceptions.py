"""
Custom exceptions for DesignBundleWeb.

Exception Hierarchy:
    DesignBundleError (base)
    ├── ConfigurationError          - Missing/invalid settings (startup failure)
    ├── ServiceUnavailableError     - Backend unreachable or timed out
    ├── APIError                    - Backend answered with a non-2xx status
    │   └── AuthenticationRequiredError - No/expired session
    ├── BundleValidationError       - Local input check failed (never hits the network)
    │   └── SelectionCountError         - Wrong number of designs selected
    ├── SubmissionError             - Generation request rejected by the backend
    ├── PaymentError                - Checkout cancelled/failed, order not created
    ├── CaptureError                - Payment taken, backend capture/verification failed
    ├── GenerationFailure           - Job reached FAILED while polling
    ├── InvalidTransitionError      - Job status moved backwards or left a terminal state
    └── WorkflowStateError          - Operation not allowed in the current workflow state

Usage:
    Every workflow error carries a `user_message` that is safe to show as-is.
    The orchestrator catches these at its boundary, records them on the
    workflow and hands the message to the notifier; nothing here should reach
    the browser as a 500.
"""

from typing import Optional, Dict, Any


class DesignBundleError(Exception):
    """
    Base exception for all DesignBundleWeb errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    default_user_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
            user_message: Message to show the user (defaults to message)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.user_message = user_message or message or self.default_user_message

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view for JSON responses."""
        return {
            "error": type(self).__name__,
            "message": self.user_message,
            "details": self.details,
        }


# =============================================================================
# STARTUP / TRANSPORT ERRORS
# =============================================================================

class ConfigurationError(DesignBundleError):
    """A required setting is missing or invalid."""


class ServiceUnavailableError(DesignBundleError):
    """
    The marketplace backend could not be reached in time.

    Typical causes:
    - Network connectivity issues
    - Backend deploy in progress
    - Request timed out
    """

    def __init__(self, message: str = "Marketplace service is not available", endpoint: str = ""):
        details = {"resolution": "Check connectivity and try again shortly"}
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(
            message,
            details,
            user_message=(
                "Unable to connect to the server. Please check your internet "
                "connection and try again."
            ),
        )
        self.endpoint = endpoint


class APIError(DesignBundleError):
    """
    The backend rejected a request.

    Carries the HTTP status, the raw payload and any DRF-style field errors.
    The user message depends on the status class, so a 400 shows the
    backend's own explanation while a 403 shows a generic one.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: str = "",
        payload: Optional[Any] = None,
        field_errors: Optional[Dict[str, list]] = None,
    ):
        details: Dict[str, Any] = {"status_code": status_code}
        if endpoint:
            details["endpoint"] = endpoint
        if field_errors:
            details["field_errors"] = field_errors
        super().__init__(message, details, user_message=_friendly_message(status_code, message))
        self.status_code = status_code
        self.endpoint = endpoint
        self.payload = payload
        self.field_errors = field_errors or {}


class AuthenticationRequiredError(APIError):
    """The caller is not signed in, or the session expired."""

    def __init__(self, message: str = "Authentication required", endpoint: str = ""):
        super().__init__(message, status_code=401, endpoint=endpoint)


def _friendly_message(status_code: int, message: str) -> str:
    if status_code == 401:
        return "Your session has expired. Please log in again."
    if status_code == 403:
        return "You do not have permission to perform this action."
    if status_code == 404:
        return "The requested resource was not found."
    if status_code in (400, 422):
        return message or "Please check your input and try again."
    if status_code >= 500:
        return (
            "Server error occurred. Please try again later or contact "
            "support if the problem persists."
        )
    return message or "An unexpected error occurred. Please try again."


# =============================================================================
# WORKFLOW ERRORS - surfaced to the user, workflow stops at that stage
# =============================================================================

class BundleValidationError(DesignBundleError):
    """
    Local validation failed before anything was sent to the backend.

    `field` names the violated constraint (e.g. "customer_contact",
    "selection", "required_count") so the UI can highlight it.
    """

    def __init__(self, field: str, message: str, details: Optional[Dict[str, Any]] = None):
        error_details = dict(details or {})
        error_details["field"] = field
        super().__init__(message, error_details)
        self.field = field


class SelectionCountError(BundleValidationError):
    """
    The selection does not hold exactly the required number of designs.

    `shortfall` is positive when more designs are needed and negative when
    too many are selected.
    """

    def __init__(self, required: int, selected: int, message: Optional[str] = None):
        shortfall = required - selected
        if message is None:
            if shortfall > 0:
                message = (
                    f"{selected} of {required} designs available; need {shortfall} more."
                )
            else:
                message = (
                    f"Select exactly {required} designs; {selected} are selected."
                )
        super().__init__(
            "selection",
            message,
            {"required": required, "selected": selected, "shortfall": shortfall},
        )
        self.required = required
        self.selected = selected
        self.shortfall = shortfall


class SubmissionError(DesignBundleError):
    """
    The backend refused to create the generation request.

    Most often the client's cached entitlement was stale and the backend
    re-validated it. The backend's message is shown verbatim; there is no
    automatic retry.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class PaymentError(DesignBundleError):
    """
    Checkout was cancelled or failed, or the payment order could not be created.

    The workflow stops here. The user restarts from the beginning; stale
    payment identifiers are never reused.
    """

    def __init__(self, message: str, job_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        error_details = dict(details or {})
        if job_id:
            error_details["job_id"] = job_id
        super().__init__(message, error_details)
        self.job_id = job_id


class CaptureError(DesignBundleError):
    """
    The gateway reported success but backend capture/verification failed.

    Money may have moved without an artifact being produced. The message
    keeps the backend's reason and the identifiers needed to reconcile.
    """

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        gateway_payment_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = dict(details or {})
        error_details.update({
            "job_id": job_id,
            "payment_id": payment_id,
            "gateway_payment_id": gateway_payment_id,
            "resolution": "Contact support with the payment reference; do not pay again",
        })
        user_message = (
            f"Payment was received but could not be confirmed: {message}. "
            f"Please contact support with payment reference {gateway_payment_id or payment_id}."
        )
        super().__init__(message, error_details, user_message=user_message)
        self.job_id = job_id
        self.payment_id = payment_id
        self.gateway_payment_id = gateway_payment_id


class GenerationFailure(DesignBundleError):
    """The generation job reached FAILED. No automatic retry."""

    def __init__(self, job_id: str, reason: str = ""):
        message = f"PDF generation failed for job {job_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            {"job_id": job_id, "reason": reason},
            user_message=(
                "Failed to generate your PDF. Please contact support if the "
                "problem persists."
            ),
        )
        self.job_id = job_id
        self.reason = reason


class InvalidTransitionError(DesignBundleError):
    """A job status update would move backwards or leave a terminal state."""

    def __init__(self, job_id: str, current: str, observed: str):
        super().__init__(
            f"Job {job_id} cannot move from {current} to {observed}",
            {"job_id": job_id, "current": current, "observed": observed},
        )


class WorkflowStateError(DesignBundleError):
    """An operation was attempted in a workflow state that does not allow it."""

    def __init__(self, operation: str, state: str, user_message: Optional[str] = None):
        super().__init__(
            f"Cannot {operation} while workflow is {state}",
            {"operation": operation, "state": state},
            user_message=user_message or "A PDF request is already in progress.",
        )
        self.operation = operation
        self.state = state
