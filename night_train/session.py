"""Dialogue session manager — one streamed narrator turn at a time.

Phases of a session:

    IDLE → ADMITTED → STREAMING → SETTLING → IDLE
                          └──────→ ABORTED → IDLE

Admission: a turn is admitted only when no session is STREAMING and the
cooldown has elapsed since the last admitted request. Rejections are silent
(admit() returns None). Admitting a new turn cancels any earlier session
still holding a token, e.g. one waiting out its settling grace period.

Streaming runs the consumption loop as its own task bound to the session's
CancelToken, under two independent deadlines: a stall watchdog reset by every
chunk, and a hard timeout on the whole stream. Cancelling the token cancels
the task promptly; a cancelled session never yields a directive.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict

from .llm import LLMError, StreamingLLM
from .models import ChatPayload, Directive
from .stream_parser import StreamMergeParser

logger = logging.getLogger(__name__)

REQUEST_COOLDOWN = 1.5
STALL_TIMEOUT = 15.0
HARD_TIMEOUT = 45.0


class SessionPhase(str, Enum):
    IDLE = "idle"
    ADMITTED = "admitted"
    STREAMING = "streaming"
    SETTLING = "settling"
    ABORTED = "aborted"


class StreamEnd(str, Enum):
    COMPLETED = "completed"
    STALLED = "stalled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CancelToken:
    """Cooperative cancellation signal for one session."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def bind(self, task: asyncio.Task) -> None:
        """Attach the task that cancel() should interrupt."""
        self._task = task
        if self.cancelled:
            task.cancel()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds. Returns True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class DialogueSession:
    """Ephemeral state of one turn. Discarded when the turn ends."""

    def __init__(self, session_id: int, admitted_at: float) -> None:
        self.id = session_id
        self.admitted_at = admitted_at
        self.token = CancelToken()
        self.phase = SessionPhase.ADMITTED
        self.parser = StreamMergeParser()

    @property
    def raw(self) -> str:
        return self.parser.raw

    @property
    def display(self) -> str:
        return self.parser.display

    def __repr__(self) -> str:
        return f"DialogueSession(id={self.id}, phase={self.phase.value})"


class StreamOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    end: StreamEnd
    narrative: str = ""
    directive: Directive | None = None
    error: str | None = None

    @property
    def settles(self) -> bool:
        """Whether the narrative should be committed to history."""
        return self.end in (StreamEnd.COMPLETED, StreamEnd.STALLED, StreamEnd.TIMED_OUT)


class DialogueSessionManager:
    def __init__(
        self,
        llm: StreamingLLM,
        cooldown: float = REQUEST_COOLDOWN,
        stall_timeout: float = STALL_TIMEOUT,
        hard_timeout: float = HARD_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.llm = llm
        self.cooldown = cooldown
        self.stall_timeout = stall_timeout
        self.hard_timeout = hard_timeout
        self._clock = clock
        self._last_request_at: float | None = None
        self._current: DialogueSession | None = None
        self._next_id = 0

    @property
    def current(self) -> DialogueSession | None:
        return self._current

    @property
    def streaming(self) -> bool:
        return self._current is not None and self._current.phase == SessionPhase.STREAMING

    @property
    def last_request_at(self) -> float | None:
        return self._last_request_at

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def admit(self) -> DialogueSession | None:
        """Admit a new turn, or return None if streaming or cooling down."""
        now = self._clock()
        if self.streaming:
            logger.debug("Turn rejected: a session is still streaming")
            return None
        if self._last_request_at is not None and now - self._last_request_at < self.cooldown:
            logger.debug("Turn rejected: request cooldown active")
            return None

        previous = self._current
        if previous is not None and previous.phase != SessionPhase.IDLE:
            logger.debug("Superseding %r", previous)
            previous.token.cancel()

        self._last_request_at = now
        self._next_id += 1
        session = DialogueSession(self._next_id, now)
        self._current = session
        return session

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        session: DialogueSession,
        payload: ChatPayload,
        on_display: Callable[[str], None] | None = None,
    ) -> StreamOutcome:
        """Consume the narrator stream for `session` and report how it ended."""
        session.phase = SessionPhase.STREAMING
        task = asyncio.create_task(self._consume(session, payload, on_display))
        session.token.bind(task)
        error: str | None = None
        try:
            end = await task
        except asyncio.CancelledError:
            if not session.token.cancelled:
                session.phase = SessionPhase.ABORTED
                raise
            end = StreamEnd.CANCELLED
        except LLMError as e:
            logger.error("Narrator stream failed: %s", e)
            end, error = StreamEnd.FAILED, str(e)

        if end == StreamEnd.CANCELLED:
            logger.info("Request cancelled (%r)", session)
        if end in (StreamEnd.FAILED, StreamEnd.CANCELLED):
            session.phase = SessionPhase.ABORTED
            return StreamOutcome(end=end, narrative=session.display, error=error)

        session.phase = SessionPhase.SETTLING
        return StreamOutcome(
            end=end,
            narrative=session.display,
            directive=session.parser.directive(),
        )

    async def _consume(
        self,
        session: DialogueSession,
        payload: ChatPayload,
        on_display: Callable[[str], None] | None,
    ) -> StreamEnd:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.hard_timeout
        stream = self.llm.stream(payload)
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.warning("Stream timeout after %.0fs", self.hard_timeout)
                    return StreamEnd.TIMED_OUT
                try:
                    delta = await asyncio.wait_for(
                        stream.__anext__(), min(self.stall_timeout, remaining)
                    )
                except StopAsyncIteration:
                    return StreamEnd.COMPLETED
                except asyncio.TimeoutError:
                    if loop.time() >= deadline:
                        logger.warning("Stream timeout after %.0fs", self.hard_timeout)
                        return StreamEnd.TIMED_OUT
                    logger.warning(
                        "Stream stalled: no data received for %.0fs", self.stall_timeout
                    )
                    return StreamEnd.STALLED

                changed = session.parser.feed(delta)
                if changed is not None and on_display is not None:
                    on_display(changed)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def finish(self, session: DialogueSession) -> None:
        """Return the manager to idle once the caller is done with `session`."""
        session.phase = SessionPhase.IDLE
        if self._current is session:
            self._current = None

    def cancel_all(self) -> None:
        """Cancel whatever session is active (component teardown)."""
        if self._current is not None:
            self._current.token.cancel()
