"""Exceptions for the Refresh Orchestrator."""


class RefreshError(Exception):
    """Base exception for refresh orchestration errors."""


class FilterNotFoundError(RefreshError):
    """No saved filter with the given name is configured."""
