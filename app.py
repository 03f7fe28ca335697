"""
DesignBundleWeb - Flask Application Entry Point.

This is a slim app factory that:
1. Loads configuration (.env + Config classes)
2. Sets up thread-aware logging
3. Creates the shared job status store and downloads cache
4. Creates the workflow registry (one workflow per browser session)
5. Registers route blueprints and JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling
    └── Cleanup on shutdown (stop pollers, close HTTP clients)

    Poll Threads (one per submitted request)
    └── JobStatusTracker with the workflow's API client

Each session's workflow owns its own MarketplaceAPIClient, carrying that
user's bearer token.
"""

from __future__ import annotations

import atexit
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask

from logging_config import setup_logging, get_logger
from core.api_client import MarketplaceAPIClient
from core.exceptions import ConfigurationError
from services.job_tracker import DownloadsCache, JobStatusStore
from services.orchestrator import OrchestratorSettings
from services.workflow_registry import WorkflowRegistry
from routes import register_blueprints, register_error_handlers


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def create_app(config_object: Optional[str] = None, client_factory=None) -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Import path of the config class (default: config.Config)
        client_factory: Callable building a MarketplaceAPIClient for a bearer
            token (tests inject one backed by httpx.MockTransport)

    Returns:
        Configured Flask application

    Raises:
        ConfigurationError: If the marketplace API URL is missing
    """
    # Load .env from base path (next to executable in production)
    # Use override=True so .env file always takes precedence over shell environment
    base_path = Path(__file__).parent
    env_file = base_path / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)  # Default behavior

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object or "config.Config")

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting DesignBundleWeb in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # CORE INITIALIZATION (FAIL-FAST)
    # =========================================================================

    base_url = app.config.get("MARKETPLACE_API_BASE_URL")
    if not base_url:
        logger.error("FATAL: MARKETPLACE_API_BASE_URL is not set")
        raise ConfigurationError(
            "MARKETPLACE_API_BASE_URL is not set",
            {"resolution": "Set it in the environment or .env file"},
        )

    if client_factory is None:
        timeout = app.config.get("MARKETPLACE_API_TIMEOUT_SECONDS", 15.0)

        def client_factory(access_token):
            return MarketplaceAPIClient(base_url, access_token=access_token, timeout_seconds=timeout)

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    job_store = JobStatusStore()
    downloads_cache = DownloadsCache()

    registry = WorkflowRegistry(
        client_factory,
        settings=OrchestratorSettings.from_config(app.config),
        eligibility_ttl=app.config.get("ELIGIBILITY_CACHE_TTL_SECONDS", 30.0),
        job_store=job_store,
        downloads_cache=downloads_cache,
    )
    app.config["WORKFLOW_REGISTRY"] = registry
    logger.info(f"Workflow registry ready (backend {base_url})")

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")

        # Stop poll threads and close HTTP clients
        registry.shutdown()
        job_store.clear()

        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # REGISTER BLUEPRINTS & ERROR HANDLERS
    # =========================================================================

    register_blueprints(app)
    register_error_handlers(app)

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
