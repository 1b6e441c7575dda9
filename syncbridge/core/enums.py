"""
Shared enums and constants used across the application.
"""

from enum import Enum


class Platform(str, Enum):
    SHOPIFY = "shopify"
    NAVER = "naver"
    MANUAL = "manual"

    @property
    def slug(self):
        return self.value

    @property
    def currency(self) -> str:
        return {"shopify": "USD", "naver": "KRW"}.get(self.value, "")


# Platform A is the foreign-currency storefront, Platform B the local one.
PLATFORM_A = Platform.SHOPIFY
PLATFORM_B = Platform.NAVER
SYNCED_PLATFORMS = (PLATFORM_A, PLATFORM_B)


def counterpart(platform: Platform) -> Platform:
    """Return the other synced platform."""
    platform = Platform(platform)
    if platform == PLATFORM_A:
        return PLATFORM_B
    if platform == PLATFORM_B:
        return PLATFORM_A
    raise ValueError(f"{platform.value} has no counterpart platform")


class SyncStatus(str, Enum):
    """Mapping level sync state"""
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class TransactionSyncStatus(str, Enum):
    """Ledger row state"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionType(str, Enum):
    SALE = "sale"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"
    SYNC = "sync"


class StockOperation(str, Enum):
    SET = "SET"
    ADD = "ADD"
    SUBTRACT = "SUBTRACT"


class ExchangeRateMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ExchangeRateSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ConflictPolicy(str, Enum):
    SHOPIFY_PRIORITY = "shopify_priority"
    NAVER_PRIORITY = "naver_priority"
    MANUAL = "manual"

    @property
    def priority_platform(self):
        """Platform whose value wins, or None when drift is only reported."""
        if self == ConflictPolicy.SHOPIFY_PRIORITY:
            return Platform.SHOPIFY
        if self == ConflictPolicy.NAVER_PRIORITY:
            return Platform.NAVER
        return None


class DriftStatus(str, Enum):
    OK = "OK"
    MISMATCH = "MISMATCH"
    ERROR = "ERROR"


class EventStatus(str, Enum):
    """Outcome of a single event line going through the orchestrator"""
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    INVALID = "invalid"
    FAILED = "failed"


class WebhookStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    QUEUED = "queued"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"
