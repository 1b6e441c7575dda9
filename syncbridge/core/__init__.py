"""
Core module exports.
"""
from .enums import (
    Platform,
    SyncStatus,
    TransactionSyncStatus,
    TransactionType,
    ConflictPolicy,
    DriftStatus,
)

from .exceptions import (
    BaseServiceError,
    ValidationError,
    NotFoundError,
    MappingNotFoundError,
    ExchangeRateNotFoundError,
    DuplicateEventError,
    SignatureError,
    PlatformServiceError,
    PlatformAPIError,
    TransientPlatformError,
    SyncError,
)
