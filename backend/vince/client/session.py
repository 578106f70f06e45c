"""Client-side attempt session: local countdown plus ledger reconciliation.

The countdown runs locally, one second per tick. Consumed seconds pile up
in ``unflushed_seconds`` and are debited from the server ledger every
``sync_interval`` seconds, at zero-crossing, on stop, and (fire-and-forget)
on teardown. The server stays authoritative for expiry: at zero the
session asks it to expire the attempt, and if time was bought in the
meantime the server keeps the attempt active and the countdown re-arms.

Timer tasks belong to the session and are cancelled together.
"""
import asyncio
import logging
from typing import Callable, List, Optional, Set

from vince.client.api import ApiRejected, TransientApiError, VinceApi

logger = logging.getLogger(__name__)

ACTIVE = 'active'
COMPLETED = 'completed'
EXPIRED = 'expired'
ABANDONED = 'abandoned'
TERMINAL = (COMPLETED, EXPIRED, ABANDONED)
# Local only: the server refused this convincer access to the attempt
DENIED = 'denied'

DEFAULT_WIN_THRESHOLD = 95


class AttemptSession:
    def __init__(self, api: VinceApi, sync_interval: float = 15, tick_interval: float = 1.0,
                 completion_retries: int = 5, completion_backoff: float = 1.0,
                 on_change: Optional[Callable[['AttemptSession'], None]] = None):
        self.api = api
        self.sync_interval = sync_interval
        self.tick_interval = tick_interval
        self.completion_retries = completion_retries
        self.completion_backoff = completion_backoff
        self.on_change = on_change

        self.attempt_id: Optional[int] = None
        self.status: Optional[str] = None
        self.convincing_score = 0
        self.win_threshold = DEFAULT_WIN_THRESHOLD
        self.time_remaining = 0
        self.unflushed_seconds = 0
        self.last_balance: Optional[int] = None
        self.stale = False
        self.pending_completion = False
        self.replies: List[dict] = []

        self._flush_lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []
        self._event_tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._finished = False

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE and not self._finished

    async def _call(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def _apply_attempt(self, data: dict) -> None:
        self.attempt_id = data.get('id', self.attempt_id)
        self.status = data.get('status', self.status)
        if data.get('convincing_score') is not None:
            self.convincing_score = data['convincing_score']
        if data.get('win_threshold') is not None:
            self.win_threshold = data['win_threshold']
        if data.get('sync_interval_seconds'):
            self.sync_interval = data['sync_interval_seconds']
        self._changed()

    # Lifecycle

    async def start(self, run_timers: bool = True) -> dict:
        """Start or resume the convincer's attempt and begin counting down."""
        self._loop = asyncio.get_running_loop()
        data = await self._call(self.api.start_attempt)
        self._finished = False
        self._apply_attempt(data)
        self.time_remaining = int(data.get('available_time_seconds', 0))
        self.unflushed_seconds = 0
        logger.info('attempt %s %s with %ss', self.attempt_id,
                    'resumed' if data.get('resumed') else 'started', self.time_remaining)
        if run_timers and self.is_active:
            self._start_timers()
        return data

    def _start_timers(self) -> None:
        self._tasks = [
            asyncio.create_task(self._ticker(), name='vince-ticker'),
            asyncio.create_task(self._syncer(), name='vince-sync'),
        ]
        for task in self._tasks:
            task.add_done_callback(self._log_task_failure)

    def _log_task_failure(self, task: asyncio.Task) -> None:
        self._event_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error('attempt %s task %s failed: %r', self.attempt_id, task.get_name(), task.exception())

    async def _cancel_timers(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []

    async def _ticker(self) -> None:
        while self.is_active:
            await asyncio.sleep(self.tick_interval)
            await self.tick()

    async def _syncer(self) -> None:
        while self.is_active:
            await asyncio.sleep(self.sync_interval)
            await self.reconcile()

    async def reconcile(self) -> None:
        """One sync cycle: flush spent seconds and retry a pending win."""
        await self.flush()
        if self.pending_completion and self.is_active:
            await self.ensure_completed()

    async def tick(self) -> None:
        """One second of local countdown."""
        if not self.is_active:
            return
        if self.time_remaining > 0:
            self.time_remaining -= 1
            self.unflushed_seconds += 1
        # Retried on every tick until the server answers
        if self.time_remaining <= 0:
            await self.handle_zero()

    async def flush(self) -> bool:
        """Debit unflushed seconds from the ledger. False if they are still pending."""
        async with self._flush_lock:
            seconds = self.unflushed_seconds
            if seconds <= 0:
                return True
            # Ticks landing while the request is in flight stay in the counter
            self.unflushed_seconds = 0
            try:
                balance = await self._call(self.api.debit, seconds)
            except TransientApiError as exc:
                self.unflushed_seconds += seconds
                self.stale = True
                logger.warning('flush of %ss deferred: %s', seconds, exc)
                self._changed()
                return False
            except ApiRejected as exc:
                logger.error('flush of %ss rejected: %s', seconds, exc)
                return False
            self.last_balance = balance
            self.stale = False
            return True

    async def handle_zero(self) -> None:
        """Countdown reached zero: settle the ledger, then let the server decide."""
        # Waits for any in-flight flush before the server reads the ledger
        await self.flush()
        try:
            data = await self._call(self.api.update_attempt, self.attempt_id, status=EXPIRED)
        except TransientApiError as exc:
            self.stale = True
            logger.warning('expiry of attempt %s deferred: %s', self.attempt_id, exc)
            return
        except ApiRejected as exc:
            await self._resync_after_rejection(exc)
            return

        self._apply_attempt(data)
        if self.status == ACTIVE:
            # Seconds still unflushed are already spent
            self.time_remaining = max(0, int(data.get('available_time_seconds', 0)) - self.unflushed_seconds)
            logger.info('attempt %s re-armed with %ss', self.attempt_id, self.time_remaining)
            self._changed()
        else:
            await self._finish()

    async def stop(self) -> dict:
        """User stop: flush everything, then mark the attempt abandoned."""
        await self._cancel_timers()
        if not await self.flush() and self.unflushed_seconds:
            self.api.beacon(self.unflushed_seconds)
            self.unflushed_seconds = 0
        try:
            data = await self._call(self.api.update_attempt, self.attempt_id, status=ABANDONED)
        except ApiRejected as exc:
            await self._resync_after_rejection(exc)
            return {'id': self.attempt_id, 'status': self.status}
        self._apply_attempt(data)
        await self._finish()
        return data

    def close(self) -> None:
        """Teardown without awaiting anything; pending seconds go out as a beacon."""
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        self._finished = True
        if self.unflushed_seconds > 0:
            self.api.beacon(self.unflushed_seconds)
            self.unflushed_seconds = 0

    async def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        await self._cancel_timers()
        if not await self.flush() and self.unflushed_seconds:
            self.api.beacon(self.unflushed_seconds)
            self.unflushed_seconds = 0
        logger.info('attempt %s closed as %s', self.attempt_id, self.status)
        self._changed()

    async def _deny(self, exc: ApiRejected) -> None:
        logger.error('attempt %s access denied (%s): %s', self.attempt_id, exc.status_code, exc)
        self.status = DENIED
        self.pending_completion = False
        await self._finish()

    async def _resync_after_rejection(self, exc: ApiRejected) -> None:
        if exc.status_code in (401, 403):
            await self._deny(exc)
            return
        # 409 means the server already moved the attempt on
        if exc.status_code != 409:
            raise exc
        try:
            data = await self._call(self.api.get_attempt, self.attempt_id)
        except TransientApiError:
            status = exc.body.get('details', {}).get('status') if isinstance(exc.body, dict) else None
            data = {'status': status} if status else {}
        self._apply_attempt(data)
        if self.status in TERMINAL:
            await self._finish()

    # Conversation and score

    async def send(self, text: str) -> Optional[dict]:
        """Send a message and request its reply. Blank messages are a no-op."""
        if not text or not text.strip():
            return None
        if not self.is_active:
            return None
        message = await self._call(self.api.send_message, self.attempt_id, text)
        result = await self._call(self.api.request_reply, message['id'])
        if 'aiResponse' in result:
            self._record_reply(result['aiResponse'])
            await self.apply_score(result['newScore'], result.get('status'))
        return result

    def _record_reply(self, reply: dict) -> None:
        if all(r.get('id') != reply.get('id') for r in self.replies):
            self.replies.append(reply)

    async def apply_score(self, score: int, status: Optional[str] = None) -> None:
        self.convincing_score = score
        if status:
            self.status = status
        self._changed()
        if self.status in TERMINAL:
            await self._finish()
        elif score >= self.win_threshold:
            await self.ensure_completed()

    async def ensure_completed(self) -> bool:
        """Retry the completion write until the server records the win.

        When every try fails transiently the write stays pending and is
        retried on each sync cycle for as long as the attempt is active.
        """
        self.pending_completion = True
        for attempt_no in range(1, self.completion_retries + 1):
            try:
                data = await self._call(self.api.update_attempt, self.attempt_id, status=COMPLETED)
            except TransientApiError as exc:
                logger.warning('completion of attempt %s failed (try %s): %s', self.attempt_id, attempt_no, exc)
                await asyncio.sleep(self.completion_backoff * attempt_no)
                continue
            except ApiRejected as exc:
                self.pending_completion = False
                await self._resync_after_rejection(exc)
                return self.status == COMPLETED
            self.pending_completion = False
            self._apply_attempt(data)
            if self.status in TERMINAL:
                await self._finish()
            return self.status == COMPLETED
        self.stale = True
        logger.warning('completion of attempt %s still pending', self.attempt_id)
        self._changed()
        return False

    # Realtime

    async def apply_event(self, event: dict) -> None:
        """Apply a pushed event for this attempt."""
        if event.get('attemptId') != self.attempt_id:
            return
        kind = event.get('type')
        if kind == 'ai_response_created':
            self._record_reply({
                'id': event.get('aiResponseId'),
                'ai_response': event.get('aiResponse'),
                'convincing_score_snapshot': event.get('convincingScore'),
            })
            await self.apply_score(event.get('convincingScore', self.convincing_score))
        elif kind in ('attempt_updated', 'attempt_closed'):
            await self.apply_score(event.get('convincing_score', self.convincing_score), event.get('status'))

    def dispatch_event(self, event: dict) -> None:
        """Thread-safe entry point for the realtime listener."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._spawn_event, event)

    def _spawn_event(self, event: dict) -> None:
        task = asyncio.ensure_future(self.apply_event(event))
        self._event_tasks.add(task)
        task.add_done_callback(self._log_task_failure)
