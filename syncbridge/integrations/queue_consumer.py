"""
Queue-driven sync worker.

Two entry points share the same per-message handling:

- process_batch(messages): for an external queue that delivers batches and
  accepts per-message failure reports. Only the ids returned in
  batch_item_failures are redelivered by the queue.
- enqueue()/start()/stop(): an in-process asyncio.Queue with worker tasks,
  redelivery with a delay and a dead-letter list after the last attempt.

Each message is processed in its own database session, so one message's
rollback never affects another. Correctness under concurrency comes from
the ledger's unique index, so the worker count only changes throughput.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from syncbridge.core.config import Settings, get_settings
from syncbridge.core.enums import EventStatus
from syncbridge.core.exceptions import ValidationError
from syncbridge.integrations.base import PlatformInterface
from syncbridge.integrations.events import QueueMessage, parse_event
from syncbridge.integrations.retry import RetryPolicy
from syncbridge.services.sync_services import SyncService

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    batch_item_failures: List[str] = field(default_factory=list)
    processed: int = 0

    def to_dict(self):
        return {"batchItemFailures": [{"itemIdentifier": i} for i in self.batch_item_failures]}


@dataclass
class DeadLetter:
    message: QueueMessage
    error: str


class MessageFailed(Exception):
    """A message whose processing must be retried by the queue."""
    pass


class SyncQueueConsumer:
    def __init__(
        self,
        session_factory: Callable,
        platforms: Dict[str, PlatformInterface],
        settings: Optional[Settings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        notifier=None,
    ):
        self.session_factory = session_factory
        self.platforms = platforms
        self.settings = settings or get_settings()
        self.retry_policy = retry_policy
        self.notifier = notifier
        self.concurrency = max(1, self.settings.QUEUE_CONCURRENCY)
        self.max_attempts = self.settings.QUEUE_MAX_DELIVERY_ATTEMPTS
        self.redelivery_delay = self.settings.QUEUE_REDELIVERY_DELAY

        self.update_queue: asyncio.Queue = asyncio.Queue()
        self.dead_letters: List[DeadLetter] = []
        self._workers: List[asyncio.Task] = []
        self._pending_redeliveries: set = set()

    async def handle_message(self, message: QueueMessage):
        """
        Process one message. Raises MessageFailed when it should be retried.

        Malformed messages are logged and dropped; retrying cannot fix them.
        """
        try:
            event = parse_event(message.body)
        except ValidationError as e:
            logger.error(f"Dropping malformed message {message.message_id}: {e}")
            return []

        async with self.session_factory() as db:
            service = SyncService(db, self.platforms, self.settings, self.retry_policy)
            outcomes = await service.handle_event(event)

        failed = [o for o in outcomes if o.status == EventStatus.FAILED]
        if failed:
            raise MessageFailed("; ".join(o.message or "failed" for o in failed))
        return outcomes

    async def process_batch(self, messages: List[QueueMessage]) -> BatchResult:
        """Process a delivered batch; report only the messages that failed."""
        result = BatchResult()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(message: QueueMessage):
            async with semaphore:
                try:
                    await self.handle_message(message)
                    return None
                except Exception as e:
                    logger.error(f"Message {message.message_id} failed: {e}")
                    return message.message_id

        failures = await asyncio.gather(*(_one(m) for m in messages))
        result.batch_item_failures = [f for f in failures if f is not None]
        result.processed = len(messages) - len(result.batch_item_failures)
        logger.info(f"Batch of {len(messages)}: {result.processed} ok, {len(result.batch_item_failures)} failed")
        return result

    # ------------------------------------------------------------------
    # In-process queue
    # ------------------------------------------------------------------

    async def enqueue(self, message: QueueMessage):
        await self.update_queue.put(message)

    async def _redeliver_later(self, message: QueueMessage):
        await asyncio.sleep(self.redelivery_delay)
        await self.update_queue.put(message)

    async def _dead_letter(self, message: QueueMessage, error: str):
        logger.error(f"Message {message.message_id} dead-lettered after {message.attempts} attempts: {error}")
        self.dead_letters.append(DeadLetter(message=message, error=error))
        if self.notifier is not None:
            await self.notifier.send_dead_letter_alert(message.message_id, error, message.attempts, message.body)

    async def _worker(self, worker_id: int):
        while True:
            message = await self.update_queue.get()
            try:
                message.attempts += 1
                await self.handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if message.attempts >= self.max_attempts:
                    await self._dead_letter(message, str(e))
                else:
                    logger.warning(
                        f"Worker {worker_id}: message {message.message_id} attempt {message.attempts} failed, "
                        f"redelivering in {self.redelivery_delay}s: {e}"
                    )
                    task = asyncio.create_task(self._redeliver_later(message))
                    self._pending_redeliveries.add(task)
                    task.add_done_callback(self._pending_redeliveries.discard)
            finally:
                self.update_queue.task_done()

    def start(self, workers: Optional[int] = None):
        count = workers or self.concurrency
        for i in range(count):
            self._workers.append(asyncio.create_task(self._worker(i)))
        logger.info(f"Sync queue consumer started with {count} worker(s)")

    async def drain(self):
        """Wait until every queued message (including redeliveries) is handled."""
        while True:
            await self.update_queue.join()
            if not self._pending_redeliveries:
                return
            await asyncio.gather(*list(self._pending_redeliveries), return_exceptions=True)

    async def stop(self):
        for task in self._workers + list(self._pending_redeliveries):
            task.cancel()
        await asyncio.gather(*self._workers, *self._pending_redeliveries, return_exceptions=True)
        self._workers = []
        self._pending_redeliveries = set()
        logger.info("Sync queue consumer stopped")
