"""
JSON error handling for the bundle API.

Workflow errors carry a user_message; they are returned as JSON with a
status code chosen by error type and never reach the browser as a 500.
"""

from flask import jsonify
from werkzeug.exceptions import HTTPException

from core.exceptions import (
    APIError,
    AuthenticationRequiredError,
    BundleValidationError,
    CaptureError,
    DesignBundleError,
    PaymentError,
    ServiceUnavailableError,
    SubmissionError,
    WorkflowStateError,
)
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


def http_status_for(error: DesignBundleError) -> int:
    """HTTP status for a workflow error."""
    if isinstance(error, AuthenticationRequiredError):
        return 401
    if isinstance(error, BundleValidationError):
        return 400
    if isinstance(error, WorkflowStateError):
        return 409
    if isinstance(error, (SubmissionError, PaymentError, CaptureError)):
        return 422
    if isinstance(error, ServiceUnavailableError):
        return 503
    if isinstance(error, APIError):
        return error.status_code if 400 <= error.status_code < 500 else 502
    return 500


def register_error_handlers(app):
    """
    Register JSON error handlers with the Flask app.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(DesignBundleError)
    def handle_workflow_error(e: DesignBundleError):
        status = http_status_for(e)
        if status >= 500:
            logger.error(f"{type(e).__name__}: {e}")
        else:
            logger.info(f"{type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.name, "message": e.description, "details": {}}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return jsonify({
            "error": "InternalError",
            "message": "An unexpected error occurred. Please try again.",
            "details": {},
        }), 500
