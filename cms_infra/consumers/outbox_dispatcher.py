import asyncio
import contextlib
import logging
import signal
from typing import Any, Awaitable, Callable, Dict, Optional

from cms_infra.consumers import account_consumer, content_consumer, forms_consumer
from cms_infra.core.config import (
    LOG_LEVEL,
    OUTBOX_BATCH_SIZE,
    OUTBOX_POLL_MS,
    OUTBOX_STALE_AFTER_SECONDS,
)
from cms_infra.core.db import close_db, init_db
from cms_infra.core.logging_config import setup_logging
from cms_infra.events import event_store
from cms_infra.events.topics import Topic
from cms_infra.models.outbox import OutboxEvent

log = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


async def handle_unknown(event_payload: Any):
    """Topics outside the catalog are nothing-to-do, not failures."""
    return None


# Every Topic member must have exactly one handler (checked below at import time)
HANDLERS: Dict[Topic, Handler] = {
    Topic.POST_CREATED: content_consumer.handle_post_created,
    Topic.POST_UPDATED: content_consumer.handle_post_updated,
    Topic.POST_DELETED: content_consumer.handle_post_deleted,
    Topic.TAG_CREATED: content_consumer.handle_tag_created,
    Topic.TAG_UPDATED: content_consumer.handle_tag_updated,
    Topic.TAG_DELETED: content_consumer.handle_tag_deleted,
    Topic.TAGS_NIGHTLY_STATS: content_consumer.handle_tags_nightly_stats,
    Topic.COMMENT_CREATED: content_consumer.handle_comment_created,
    Topic.COMMENT_UPDATED: content_consumer.handle_comment_updated,
    Topic.COMMENT_DELETED: content_consumer.handle_comment_deleted,
    Topic.COMMENT_RESTORED: content_consumer.handle_comment_restored,
    Topic.USER_CREATED: account_consumer.handle_user_created,
    Topic.USER_UPDATED: account_consumer.handle_user_updated,
    Topic.USER_DELETED: account_consumer.handle_user_deleted,
    Topic.FORM_CREATED: forms_consumer.handle_form_created,
    Topic.FORM_UPDATED: forms_consumer.handle_form_updated,
    Topic.FORM_DELETED: forms_consumer.handle_form_deleted,
    Topic.FORM_SUBMITTED: forms_consumer.handle_form_submitted,
    Topic.FIELD_CREATED: forms_consumer.handle_field_created,
    Topic.FIELD_UPDATED: forms_consumer.handle_field_updated,
    Topic.FIELD_DELETED: forms_consumer.handle_field_deleted,
    Topic.SUBMISSION_CREATED: forms_consumer.handle_submission_created,
    Topic.UNKNOWN: handle_unknown,
}

_unhandled = [topic.value for topic in Topic if topic not in HANDLERS]
if _unhandled:
    raise RuntimeError(f"Outbox topics without a handler: {', '.join(_unhandled)}")


def resolve_handler(topic_name: str) -> Handler:
    return HANDLERS[Topic.parse(topic_name)]


async def dispatch_event(event: OutboxEvent):
    """
    Routes an OutboxEvent to the handler registered for its topic.
    Handler exceptions propagate to the caller, which records them.
    """
    topic = Topic.parse(event.topic)
    if topic is Topic.UNKNOWN:
        log.debug(f"No handler for {event.topic} (ID: {event.id.hex[:8]}...)")
    else:
        log.debug(f"Dispatching {event.topic} (ID: {event.id.hex[:8]}...)")
    await HANDLERS[topic](event.payload)


class OutboxDispatcher:
    """
    Polls the outbox on a fixed period and hands claimed events to their handlers.

    The polling loop is an asyncio task owned by this object: `start()` creates it,
    `stop()` lets the in-flight tick finish and then releases it. Ticks never overlap;
    a `tick()` that arrives while another one is running is skipped.
    """

    def __init__(
        self,
        interval_ms: int = OUTBOX_POLL_MS,
        batch_size: int = OUTBOX_BATCH_SIZE,
        stale_after_seconds: int = OUTBOX_STALE_AFTER_SECONDS,
    ):
        self.interval_ms = interval_ms
        self.batch_size = batch_size
        self.stale_after_seconds = stale_after_seconds

        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.is_running:
            log.warning("Outbox dispatcher already running")
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="outbox-dispatcher")
        log.info(f"Outbox dispatcher started (poll {self.interval_ms} ms, batch {self.batch_size})")

    async def stop(self):
        """Stops polling. An in-flight tick is awaited, never cancelled, so claimed rows get marked."""
        if self._task is None:
            return
        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
        log.info("Outbox dispatcher stopped")

    async def _run_loop(self):
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception:
                # Storage failures end this tick only; the next period tries again
                log.exception("Outbox dispatcher tick failed")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_ms / 1000)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> int:
        """Runs one polling cycle. Returns the number of events handled (0 if skipped)."""
        if self._tick_lock.locked():
            log.debug("Previous outbox tick still running; skipping")
            return 0
        async with self._tick_lock:
            return await self._process_batch()

    async def _process_batch(self) -> int:
        if self.stale_after_seconds > 0:
            await event_store.release_stale(self.stale_after_seconds)

        claimed = await event_store.claim(self.batch_size)
        done = failed = 0

        for event_id in claimed:
            event = await event_store.load(event_id)
            if event is None:
                continue

            try:
                await dispatch_event(event)
            except Exception as e:
                log.warning(f"Handler error for {event.topic} ({event.id}): {e}")
                await event_store.mark_error(event.id)
                failed += 1
            else:
                await event_store.mark_done(event.id)
                done += 1

        if done or failed:
            log.info(f"Outbox batch processed: {done} done, {failed} failed ({len(claimed)} claimed)")
        return done + failed


async def start_outbox_dispatcher():
    """Main loop for running the dispatcher as its own process."""
    setup_logging(LOG_LEVEL)
    await init_db()

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_requested.set)

    dispatcher = OutboxDispatcher()
    dispatcher.start()
    try:
        await stop_requested.wait()
    finally:
        await dispatcher.stop()
        await close_db()

if __name__ == "__main__":
    asyncio.run(start_outbox_dispatcher())
