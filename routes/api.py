"""
Service routes.

Handles:
- /health - Health check endpoint
"""

from flask import Blueprint, current_app

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    if current_app.config.get("MARKETPLACE_API_BASE_URL"):
        health_status["checks"]["marketplace_api"] = "configured"
    else:
        health_status["checks"]["marketplace_api"] = "not_configured"
        health_status["status"] = "degraded"

    registry = current_app.config.get("WORKFLOW_REGISTRY")
    if registry is not None:
        health_status["checks"]["workflows"] = len(registry)
    else:
        health_status["checks"]["workflows"] = "not_available"
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
