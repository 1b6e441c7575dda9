# syncbridge/services/signature_verifier.py
"""
Inbound webhook authentication.

Shopify signs the raw body: base64(HMAC-SHA256(secret, body)) in
X-Shopify-Hmac-Sha256. Naver signs "{timestamp}.{body}" the same way and
sends X-Naver-Signature plus X-Naver-Timestamp (epoch milliseconds).

The verifier always works on the exact bytes received, before any JSON
parsing, and fails closed.
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Mapping, Optional

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import Platform
from syncbridge.core.exceptions import SignatureError

logger = logging.getLogger(__name__)

SHOPIFY_SIGNATURE_HEADER = "X-Shopify-Hmac-Sha256"
NAVER_SIGNATURE_HEADER = "X-Naver-Signature"
NAVER_TIMESTAMP_HEADER = "X-Naver-Timestamp"


def compute_signature(secret: str, message: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for plain dicts too."""
    value = headers.get(name) if hasattr(headers, "get") else None
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


class SignatureVerifier:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _bypass_enabled(self) -> bool:
        if not self.settings.WEBHOOK_SIGNATURE_BYPASS:
            return False
        if self.settings.is_production:
            logger.error("WEBHOOK_SIGNATURE_BYPASS is set in production; ignoring it")
            return False
        return True

    def _reject(self, source: str, reason: str) -> bool:
        logger.warning(f"Rejected {source} webhook: {reason}")
        return False

    def verify(self, source: str, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        """Return True only when the webhook is authentic."""
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")

        if self._bypass_enabled():
            logger.warning(f"Webhook signature check bypassed for {source} (non-production)")
            return True

        try:
            platform = Platform(source)
        except ValueError:
            return self._reject(str(source), "unknown source")

        if platform == Platform.SHOPIFY:
            return self._verify_shopify(raw_body, headers)
        if platform == Platform.NAVER:
            return self._verify_naver(raw_body, headers)
        return self._reject(platform.value, "source does not send webhooks")

    def require_valid(self, source: str, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.verify(source, raw_body, headers):
            raise SignatureError(f"Invalid {source} webhook signature")

    def _verify_shopify(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self.settings.SHOPIFY_WEBHOOK_SECRET
        if not secret:
            return self._reject("shopify", "webhook secret not configured")

        signature = _header(headers, SHOPIFY_SIGNATURE_HEADER)
        if not signature:
            return self._reject("shopify", "missing signature header")

        expected = compute_signature(secret, raw_body)
        if not hmac.compare_digest(signature.encode("ascii", "ignore"), expected.encode("ascii")):
            return self._reject("shopify", "signature mismatch")
        return True

    def _verify_naver(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self.settings.NAVER_WEBHOOK_SECRET
        if not secret:
            return self._reject("naver", "webhook secret not configured")

        signature = _header(headers, NAVER_SIGNATURE_HEADER)
        timestamp = _header(headers, NAVER_TIMESTAMP_HEADER)
        if not signature or not timestamp:
            return self._reject("naver", "missing signature or timestamp header")

        try:
            sent_at = int(timestamp) / 1000.0
        except ValueError:
            return self._reject("naver", f"malformed timestamp {timestamp!r}")

        tolerance = self.settings.WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS
        if abs(time.time() - sent_at) > tolerance:
            return self._reject("naver", f"timestamp outside {tolerance}s tolerance")

        message = timestamp.encode("ascii") + b"." + raw_body
        expected = compute_signature(secret, message)
        if not hmac.compare_digest(signature.encode("ascii", "ignore"), expected.encode("ascii")):
            return self._reject("naver", "signature mismatch")
        return True
