# tests/unit/integrations/test_retry.py
import pytest

from syncbridge.core.exceptions import PlatformAPIError, TransientPlatformError
from syncbridge.integrations.retry import RetryPolicy


class FlakyCall:
    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or TransientPlatformError("503", status_code=503)
        self.calls = 0

    async def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return value


async def test_transient_errors_are_retried(retry_policy):
    call = FlakyCall(failures=2)

    assert await retry_policy.call(call, "ok") == "ok"
    assert call.calls == 3


async def test_last_transient_error_is_reraised(retry_policy):
    call = FlakyCall(failures=5)

    with pytest.raises(TransientPlatformError):
        await retry_policy.call(call, "ok")
    assert call.calls == 3


async def test_permanent_errors_are_not_retried(retry_policy):
    call = FlakyCall(failures=1, error=PlatformAPIError("bad request", status_code=400))

    with pytest.raises(PlatformAPIError):
        await retry_policy.call(call, "ok")
    assert call.calls == 1


def test_policy_from_settings(settings):
    policy = RetryPolicy.from_settings(settings)

    assert policy.max_attempts == settings.RETRY_MAX_ATTEMPTS
    assert policy.initial_delay == 0
    assert policy.retry_on == (TransientPlatformError,)
