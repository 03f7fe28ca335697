"""
Per-session workflow instances.

Flask sessions only hold a workflow id; the objects live here. One
BundleWorkflow per browser session, each with its own API client (the
client carries the user's token and must not be shared).

Thread Model:
    Request threads (Flask)
    └── BundleWorkflow
        ├── SelectionEngine      (request threads)
        └── RequestOrchestrator
            └── JobStatusTracker thread (one per submitted request)
"""

from __future__ import annotations

import hashlib
import threading
import time
import uuid
from typing import Callable, Dict, Optional

from models.bundle import SelectionStrategy
from models.catalog import CatalogFilter
from modules.catalog import CatalogService
from modules.eligibility import EligibilityResolver
from modules.notifications import QueueNotifier
from modules.pricing import PriceQuoter
from modules.selection import SelectionEngine
from services.job_tracker import DownloadsCache, JobStatusStore
from services.orchestrator import OrchestratorSettings, RequestOrchestrator
from logging_config import get_logger


logger = get_logger(__name__)


def identity_for_token(access_token: Optional[str]) -> Optional[str]:
    """Stable, non-reversible key for a bearer token (None when signed out)."""
    if not access_token:
        return None
    return hashlib.sha256(access_token.encode("utf-8")).hexdigest()[:16]


class BundleWorkflow:
    """
    Everything one session needs to build and submit a bundle.

    Attributes:
        workflow_id: Key stored in the Flask session
        identity: Hashed token (None when signed out)
        engine: SelectionEngine (None until a selection is started)
        use_subscription_allowance: User opted to spend subscription allowance
    """

    def __init__(
        self,
        workflow_id: str,
        api_client,
        access_token: Optional[str],
        settings: OrchestratorSettings,
        eligibility_ttl: float,
        job_store: JobStatusStore,
        downloads_cache: DownloadsCache,
    ):
        self.workflow_id = workflow_id
        self.api_client = api_client
        self.identity = identity_for_token(access_token)
        self.catalog = CatalogService(api_client)
        self.eligibility = EligibilityResolver(api_client, ttl_seconds=eligibility_ttl)
        self.quoter = PriceQuoter(api_client)
        self.notifier = QueueNotifier()
        self.orchestrator = RequestOrchestrator(
            api_client,
            self.eligibility,
            self.quoter,
            self.identity,
            notifier=self.notifier,
            settings=settings,
            job_store=job_store,
            downloads_cache=downloads_cache,
        )
        self.engine: Optional[SelectionEngine] = None
        self.use_subscription_allowance = False
        self.last_used = time.monotonic()

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def start_selection(
        self,
        mode: SelectionStrategy,
        required_count: int,
        catalog_filter: CatalogFilter,
        use_subscription_allowance: bool = False,
    ) -> SelectionEngine:
        """Fresh SelectionEngine with page 1 of the pool loaded."""
        engine = SelectionEngine(self.catalog, required_count, mode, catalog_filter)
        if use_subscription_allowance:
            engine.lock_first_n()
        engine.refresh()

        self.engine = engine
        self.use_subscription_allowance = use_subscription_allowance
        return engine

    def close(self) -> None:
        self.orchestrator.close()
        self.api_client.close()


class WorkflowRegistry:
    """
    Thread-safe map of workflow id -> BundleWorkflow.

    Usage:
        # At app startup
        registry = WorkflowRegistry(client_factory, settings, ...)

        # In routes
        workflow = registry.create(access_token)
        session["workflow_id"] = workflow.workflow_id
        workflow = registry.get(session["workflow_id"])

        # At app shutdown
        registry.shutdown()
    """

    def __init__(
        self,
        client_factory: Callable[[Optional[str]], object],
        settings: Optional[OrchestratorSettings] = None,
        eligibility_ttl: float = 30.0,
        job_store: Optional[JobStatusStore] = None,
        downloads_cache: Optional[DownloadsCache] = None,
        max_idle_seconds: float = 3600.0,
    ):
        """
        Args:
            client_factory: Builds a MarketplaceAPIClient for a bearer token
            settings: Orchestrator tunables
            eligibility_ttl: Eligibility cache TTL per workflow
            job_store: Shared job status store
            downloads_cache: Shared downloads cache
            max_idle_seconds: Idle workflows older than this are evicted
        """
        self._client_factory = client_factory
        self._settings = settings or OrchestratorSettings()
        self._eligibility_ttl = eligibility_ttl
        self.job_store = job_store or JobStatusStore()
        self.downloads_cache = downloads_cache or DownloadsCache()
        self._max_idle_seconds = max_idle_seconds

        self._workflows: Dict[str, BundleWorkflow] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._workflows)

    def create(self, access_token: Optional[str]) -> BundleWorkflow:
        self.evict_idle()

        workflow = BundleWorkflow(
            workflow_id=str(uuid.uuid4()),
            api_client=self._client_factory(access_token),
            access_token=access_token,
            settings=self._settings,
            eligibility_ttl=self._eligibility_ttl,
            job_store=self.job_store,
            downloads_cache=self.downloads_cache,
        )
        with self._lock:
            self._workflows[workflow.workflow_id] = workflow

        logger.info(f"Created workflow {workflow.workflow_id[:8]}")
        return workflow

    def get(self, workflow_id: Optional[str]) -> Optional[BundleWorkflow]:
        if not workflow_id:
            return None
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        if workflow is not None:
            workflow.touch()
        return workflow

    def discard(self, workflow_id: str) -> None:
        with self._lock:
            workflow = self._workflows.pop(workflow_id, None)
        if workflow is not None:
            workflow.close()
            logger.info(f"Discarded workflow {workflow_id[:8]}")

    def evict_idle(self) -> int:
        cutoff = time.monotonic() - self._max_idle_seconds
        with self._lock:
            stale = [wid for wid, wf in self._workflows.items() if wf.last_used < cutoff]
        for workflow_id in stale:
            self.discard(workflow_id)
        return len(stale)

    def shutdown(self) -> None:
        with self._lock:
            workflow_ids = list(self._workflows)

        logger.info(f"Shutting down {len(workflow_ids)} workflows...")
        for workflow_id in workflow_ids:
            self.discard(workflow_id)
