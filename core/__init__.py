"""
Core module for DesignBundleWeb.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- api_client: HTTP client for the marketplace backend (import from
  core.api_client directly so importing the exceptions stays cheap)
"""

from .exceptions import (
    DesignBundleError,
    ConfigurationError,
    ServiceUnavailableError,
    APIError,
    AuthenticationRequiredError,
    BundleValidationError,
    SelectionCountError,
    SubmissionError,
    PaymentError,
    CaptureError,
    GenerationFailure,
    InvalidTransitionError,
    WorkflowStateError,
)

__all__ = [
    "DesignBundleError",
    "ConfigurationError",
    "ServiceUnavailableError",
    "APIError",
    "AuthenticationRequiredError",
    "BundleValidationError",
    "SelectionCountError",
    "SubmissionError",
    "PaymentError",
    "CaptureError",
    "GenerationFailure",
    "InvalidTransitionError",
    "WorkflowStateError",
]
