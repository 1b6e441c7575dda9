class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass


class ValidationError(BaseServiceError):
    """Raised when mapping, policy or payload data is invalid. Never retried."""
    pass


class NotFoundError(BaseServiceError):
    """Raised when a required record does not exist."""
    pass


class MappingNotFoundError(NotFoundError):
    """Raised when a sync path needs a mapping that is missing or inactive."""

    def __init__(self, sku: str, reason: str = "not found"):
        self.sku = sku
        self.reason = reason
        super().__init__(f"Mapping for SKU {sku} {reason}")


class ExchangeRateNotFoundError(NotFoundError):
    """Raised when no exchange rate is valid at the requested time."""
    pass


class DuplicateEventError(BaseServiceError):
    """Raised when the ledger already holds a transaction for an event key."""

    def __init__(self, order_id: str, order_line_item_id: str, transaction_type: str):
        self.order_id = order_id
        self.order_line_item_id = order_line_item_id
        self.transaction_type = transaction_type
        super().__init__(
            f"Transaction already recorded for order {order_id} "
            f"line {order_line_item_id} ({transaction_type})"
        )


class SignatureError(BaseServiceError):
    """Raised when a webhook signature cannot be verified."""
    pass


class PlatformServiceError(BaseServiceError):
    """Base exception for platform service errors."""
    pass


class PlatformAPIError(PlatformServiceError):
    """Raised when a platform API call fails permanently (4xx)."""

    def __init__(self, message: str, status_code: int = None, platform: str = None):
        self.status_code = status_code
        self.platform = platform
        super().__init__(message)


class TransientPlatformError(PlatformAPIError):
    """Raised on network errors, timeouts, 429 and 5xx responses. Retried."""
    pass


class SyncError(PlatformServiceError):
    """Raised when platform synchronization fails."""
    pass


class DriftCheckInProgressError(BaseServiceError):
    """Raised when a drift check is requested while one is already running."""
    pass
