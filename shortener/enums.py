"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus", "AccessVerdict", "DeviceType"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    ERROR = "error"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class AccessVerdict(StrEnum):
    """Outcome of the expiry/access policy for a single record."""

    ALLOWED = "allowed"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class DeviceType(StrEnum):
    """Coarse device classes derived from a user-agent string."""

    MOBILE = "Mobile"
    TABLET = "Tablet"
    DESKTOP = "Desktop"
