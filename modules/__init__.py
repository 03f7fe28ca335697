"""Workflow building blocks for the DesignBundleWeb application."""

__all__ = [
    "artifact",
    "catalog",
    "eligibility",
    "notifications",
    "pricing",
    "selection",
]
