"""
Core module for the execution gateway.

This module provides the foundational components shared by every venue:
- Models: Validated position, balance, order and intent records
- Exceptions: GatewayError taxonomy
- Config: YAML + .env configuration loading
- AccountStateStore: TTL cache for balance and positions
"""

from .exceptions import (
    ConfigurationError,
    GatewayError,
    NotFoundError,
    PrecisionLookupError,
    SigningError,
    TransientNetworkError,
    VenueRejection,
)
from .state_store import AccountStateStore

__all__ = [
    "AccountStateStore",
    "ConfigurationError",
    "GatewayError",
    "NotFoundError",
    "PrecisionLookupError",
    "SigningError",
    "TransientNetworkError",
    "VenueRejection",
]
