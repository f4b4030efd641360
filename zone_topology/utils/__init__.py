"""
Utility functions and helpers.

This package contains hostname normalization, configuration validation
and cancellation primitives.
"""

from .cancellation import CancellationToken, OperationCancelled
from .validators import (
    ConfigurationError,
    ResolverConfig,
    is_ip_address,
    normalize_name,
    validate_zone_name,
)

__all__ = [
    "CancellationToken",
    "OperationCancelled",
    "ConfigurationError",
    "ResolverConfig",
    "is_ip_address",
    "normalize_name",
    "validate_zone_name",
]
