# syncbridge/integrations/retry.py
"""
Single retry/backoff policy applied around every outbound platform call.
"""

import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from syncbridge.core.config import Settings
from syncbridge.core.exceptions import TransientPlatformError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Exponential backoff for transient platform failures.

    Only the configured error classes are retried; everything else (4xx,
    validation) propagates on the first attempt. After the last attempt the
    original exception is re-raised.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        retry_on: Tuple[Type[BaseException], ...] = (TransientPlatformError,),
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.retry_on = retry_on

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            backoff_factor=settings.RETRY_BACKOFF_FACTOR,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_delay,
                exp_base=self.backoff_factor,
                max=self.max_delay,
            ),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def call(self, func: Callable[..., Awaitable[T]], *args, description: Optional[str] = None, **kwargs) -> T:
        description = description or getattr(func, "__name__", "platform call")
        async for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"Retrying {description} (attempt {attempt.retry_state.attempt_number})")
                return await func(*args, **kwargs)
