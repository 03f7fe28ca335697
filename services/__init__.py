"""
Services layer for DesignBundleWeb.

This module contains the workflow services:
- RequestOrchestrator: Drives one bundle request through submit/payment/polling
- JobStatusTracker: Polls a generation job until it finishes
- JobStatusStore / DownloadsCache: State shared by every view
- WorkflowRegistry: Per-session workflow instances

Thread Model:
    Main Thread (Flask)
    └── JobStatusTracker threads (one per submitted request)

Each session's workflow has its own MarketplaceAPIClient, carrying that
user's token.
"""

from .job_tracker import DownloadsCache, JobStatusStore, JobStatusTracker, TrackerOutcome
from .orchestrator import (
    CheckoutResult,
    OrchestratorSettings,
    OrchestratorState,
    PaymentOrder,
    RequestOrchestrator,
)
from .workflow_registry import BundleWorkflow, WorkflowRegistry

__all__ = [
    "BundleWorkflow",
    "CheckoutResult",
    "DownloadsCache",
    "JobStatusStore",
    "JobStatusTracker",
    "OrchestratorSettings",
    "OrchestratorState",
    "PaymentOrder",
    "RequestOrchestrator",
    "TrackerOutcome",
    "WorkflowRegistry",
]
