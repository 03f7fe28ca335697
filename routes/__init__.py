"""
Flask route blueprints for DesignBundleWeb.

This module contains all route handlers organized by functionality:
- bundle: JSON endpoints for the PDF bundle workflow
- api: Service endpoints (health)
- errors: JSON error handlers

Each blueprint is registered with the Flask app in create_app().
"""

from .bundle import bundle_bp
from .api import api_bp
from .errors import http_status_for, register_error_handlers

__all__ = [
    "bundle_bp",
    "api_bp",
    "http_status_for",
    "register_error_handlers",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(bundle_bp)
    app.register_blueprint(api_bp)
