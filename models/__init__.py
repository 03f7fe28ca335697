"""
Data models for DesignBundleWeb.

This module contains immutable dataclasses for:
- BundleRequest: What gets submitted for PDF generation
- EligibilitySnapshot / PriceTable: What the account may have and what it costs
- DesignSummary / CatalogPage: Designs offered for selection
- GenerationJob: Backend job as last observed

Frozen dataclasses are safe to hand between the request thread and the
status polling threads.
"""

from .catalog import CatalogFilter, CatalogPage, Category, DesignSummary, MediaItem
from .bundle import BundleRequest, CustomerDetails, SelectionStrategy
from .entitlement import EligibilitySnapshot, PriceTable
from .generation_job import DownloadRecord, GenerationJob, JobStatus

__all__ = [
    # Catalog models
    "CatalogFilter",
    "CatalogPage",
    "Category",
    "DesignSummary",
    "MediaItem",
    # Bundle models
    "BundleRequest",
    "CustomerDetails",
    "SelectionStrategy",
    # Entitlement models
    "EligibilitySnapshot",
    "PriceTable",
    # Job models
    "DownloadRecord",
    "GenerationJob",
    "JobStatus",
]
