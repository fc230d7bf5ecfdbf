"""Shared enums for the short-link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus", "ResolutionStatus", "RandomSourceKind"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    EXHAUSTED = "exhausted"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class ResolutionStatus(StrEnum):
    """Terminal outcomes of resolving a short code."""

    REDIRECT = "redirect"
    NOT_FOUND = "not_found"
    GONE = "gone"


class RandomSourceKind(StrEnum):
    """Which random source produced a short code."""

    STRONG = "strong"
    DEGRADED = "degraded"
