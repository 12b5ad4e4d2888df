"""Completion polling for generation jobs.

A ``CompletionPoller`` owns one asyncio task that checks a job handle on a
fixed interval until the job completes, fails, or the attempt/wall-clock
budget runs out. ``PollRegistry`` keeps at most one live poller per
conversation: starting a new one cancels the previous task first.

States: idle -> polling -> completed | failed | timed_out | cancelled.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable

from queryloop.config import settings
from queryloop.errors import JobRunnerUnavailableError, JobStatusFormatError, QueryLoopError
from queryloop.models.events import SSEEvent
from queryloop.services import streaming
from queryloop.services.logger import log_poll_attempt, log_poll_transition, logger
from queryloop.tools.job_runner import JobRunner, JobStatus

RefreshFn = Callable[[str], Awaitable[Any]]
PublishFn = Callable[[str, SSEEvent], None]
FinishFn = Callable[["CompletionPoller"], None]


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {PollState.COMPLETED, PollState.FAILED, PollState.TIMED_OUT, PollState.CANCELLED}
)


class CompletionPoller:
    def __init__(
        self,
        conversation_id: str,
        job_handle: str,
        *,
        job_runner: JobRunner,
        refresh: RefreshFn,
        publish: PublishFn | None = None,
        message_id: str | None = None,
        on_finish: FinishFn | None = None,
        interval: float | None = None,
        max_attempts: int | None = None,
        timeout: float | None = None,
        format_error_limit: int | None = None,
    ):
        self.conversation_id = conversation_id
        self.job_handle = job_handle
        self.message_id = message_id
        self.state = PollState.IDLE
        self.attempts = 0
        self.error: str | None = None

        self._job_runner = job_runner
        self._refresh = refresh
        self._publish = publish
        self._on_finish = on_finish
        self._interval = settings.poll_interval_seconds if interval is None else interval
        self._max_attempts = settings.poll_max_attempts if max_attempts is None else max_attempts
        self._timeout = settings.poll_timeout_seconds if timeout is None else timeout
        self._format_error_limit = (
            settings.poll_format_error_limit if format_error_limit is None else format_error_limit
        )
        self._answer_seen = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_polling(self) -> bool:
        return self.state == PollState.POLLING

    def start(self) -> asyncio.Task[None]:
        if self.state != PollState.IDLE:
            raise RuntimeError(f"Poller for {self.conversation_id} already {self.state.value}")
        self.state = PollState.POLLING
        self._task = asyncio.create_task(self._run(), name=f"poller-{self.conversation_id}")
        self._emit(streaming.poll_started(self.job_handle, self.message_id))
        return self._task

    def cancel(self) -> None:
        """Stop polling. No status check is issued after this returns."""
        if self.state != PollState.POLLING:
            return
        self._finish(PollState.CANCELLED)
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def notify_answer(self, message_ids: list[str], all_answered: bool) -> None:
        """Called when a store snapshot shows the answer already arrived."""
        if not self.is_polling:
            return
        if all_answered or self.message_id is None or self.message_id in message_ids:
            self._answer_seen.set()

    async def wait(self) -> PollState:
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self.state

    async def _run(self) -> None:
        try:
            await asyncio.wait_for(self._poll(), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._finish(PollState.TIMED_OUT)
        except asyncio.CancelledError:
            self._finish(PollState.CANCELLED)
            raise
        except Exception as e:
            logger.exception(f"Poller for {self.conversation_id} crashed: {e}")
            self._finish(PollState.FAILED, "AI response generation failed.")

    async def _wait_interval(self) -> bool:
        """Sleep one interval; True if an answer was seen in the meantime."""
        try:
            await asyncio.wait_for(self._answer_seen.wait(), timeout=self._interval)
            return True
        except asyncio.TimeoutError:
            return False

    async def _poll(self) -> None:
        format_errors = 0
        while True:
            if await self._wait_interval():
                await self._complete()
                return

            if self.attempts >= self._max_attempts:
                self._finish(PollState.TIMED_OUT)
                return
            self.attempts += 1

            try:
                status = await self._job_runner.status(self.job_handle)
            except JobStatusFormatError as e:
                format_errors += 1
                log_poll_attempt(self.conversation_id, self.job_handle, self.attempts, "format_error", str(e))
                if format_errors >= self._format_error_limit:
                    self._finish(PollState.FAILED, "Invalid status check request format.")
                    return
                continue
            except JobRunnerUnavailableError as e:
                format_errors = 0
                log_poll_attempt(self.conversation_id, self.job_handle, self.attempts, "unavailable", str(e))
                continue

            format_errors = 0
            log_poll_attempt(self.conversation_id, self.job_handle, self.attempts, status.value)
            if status == JobStatus.COMPLETED:
                await self._complete()
                return
            if status == JobStatus.FAILED:
                self._finish(PollState.FAILED, "AI response generation failed.")
                return

    async def _complete(self) -> None:
        # The refreshed snapshot must be in place before loading clears.
        try:
            await self._refresh(self.conversation_id)
        except QueryLoopError as e:
            logger.warning(f"Refresh after completion failed for {self.conversation_id}: {e.message}")
        self._finish(PollState.COMPLETED)

    def _finish(self, state: PollState, error: str | None = None) -> None:
        if self.state in TERMINAL_STATES:
            return
        self.state = state
        self.error = error
        log_poll_transition(self.conversation_id, self.job_handle, state.value, self.attempts, error)
        if state == PollState.COMPLETED:
            self._emit(streaming.poll_completed(self.job_handle, self.attempts))
        elif state == PollState.FAILED:
            self._emit(streaming.poll_failed(self.job_handle, error or "AI response generation failed."))
        elif state == PollState.TIMED_OUT:
            self._emit(streaming.poll_timed_out(self.job_handle, self.attempts))
        elif state == PollState.CANCELLED:
            self._emit(streaming.poll_cancelled(self.job_handle))
        if self._on_finish is not None:
            self._on_finish(self)

    def _emit(self, event: SSEEvent) -> None:
        if self._publish is not None:
            self._publish(self.conversation_id, event)


class PollRegistry:
    def __init__(
        self,
        job_runner: JobRunner,
        *,
        refresh: RefreshFn | None = None,
        publish: PublishFn | None = None,
        **poller_options: Any,
    ):
        self._job_runner = job_runner
        self._refresh = refresh
        self._publish = publish
        self._poller_options = poller_options
        self._pollers: dict[str, CompletionPoller] = {}

    def bind_refresh(self, refresh: RefreshFn) -> None:
        self._refresh = refresh

    def start(
        self, conversation_id: str, job_handle: str, message_id: str | None = None
    ) -> CompletionPoller:
        if self._refresh is None:
            raise RuntimeError("PollRegistry has no refresh callback bound")
        self.cancel(conversation_id)
        poller = CompletionPoller(
            conversation_id,
            job_handle,
            job_runner=self._job_runner,
            refresh=self._refresh,
            publish=self._publish,
            message_id=message_id,
            on_finish=self._discard,
            **self._poller_options,
        )
        self._pollers[conversation_id] = poller
        poller.start()
        return poller

    def _discard(self, poller: CompletionPoller) -> None:
        # Finished pollers leave the registry; state() then reports idle.
        if self._pollers.get(poller.conversation_id) is poller:
            del self._pollers[poller.conversation_id]

    def get(self, conversation_id: str) -> CompletionPoller | None:
        return self._pollers.get(conversation_id)

    def state(self, conversation_id: str) -> PollState:
        poller = self._pollers.get(conversation_id)
        return poller.state if poller else PollState.IDLE

    def is_polling(self, conversation_id: str) -> bool:
        poller = self._pollers.get(conversation_id)
        return poller is not None and poller.is_polling

    def cancel(self, conversation_id: str) -> bool:
        poller = self._pollers.get(conversation_id)
        if poller is None or not poller.is_polling:
            return False
        poller.cancel()
        return True

    def notify_answer(self, conversation_id: str, message_ids: list[str], all_answered: bool) -> None:
        poller = self._pollers.get(conversation_id)
        if poller is not None:
            poller.notify_answer(message_ids, all_answered)

    async def cancel_all(self) -> None:
        pollers = [p for p in self._pollers.values() if p.is_polling]
        for poller in pollers:
            poller.cancel()
        await asyncio.gather(*(p.wait() for p in pollers))
