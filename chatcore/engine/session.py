import asyncio
import logging
import random
import re
import uuid
from enum import Enum
from typing import AsyncGenerator, Dict, List, Optional

from chatcore.common.errors import (
    AllCandidatesExhausted,
    ChatCoreError,
    DeadlineExceeded,
    GenerationCancelled,
    UpstreamError,
)
from chatcore.common.models import (
    Candidate,
    GenerationRequest,
    GenerationResult,
    StreamEvent,
    Usage,
)
from chatcore.engine.cancellation import CancelToken, cancellable_sleep

logger = logging.getLogger("ChatCore")

STREAM_MODES = ("native", "synthesized")
TERMINAL_EVENTS = {"end", "cancelled", "error"}

# Words keep their trailing whitespace so the chunks concatenate back exactly
_WORD_CHUNK = re.compile(r"\s*\S+\s*|\s+")


class SessionState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class StreamSession:
    """One in-flight streaming generation.

    Deltas are recorded in the order they are delivered; the concatenation
    of everything a consumer received always equals ``content``.
    """

    def __init__(self, request: GenerationRequest, mode: str):
        self.id = uuid.uuid4().hex
        self.request = request
        self.mode = mode
        self.state = SessionState.PENDING
        self.cancel_token = CancelToken()
        self.deltas: List[str] = []
        self.served_by: Optional[Candidate] = None
        self.usage: Optional[Usage] = None
        self.finish_reason: Optional[str] = None
        self.error: Optional[Exception] = None
        self._queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def content(self) -> str:
        return "".join(self.deltas)

    @property
    def is_finished(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED)

    def _emit(self, event: StreamEvent) -> None:
        if event.type == "delta":
            self.deltas.append(event.content)
        self._queue.put_nowait(event)

    async def events(self) -> AsyncGenerator[StreamEvent, None]:
        """Yields every event of the session, ending after the terminal one."""
        while True:
            event = await self._queue.get()
            yield event
            if event.type in TERMINAL_EVENTS:
                return

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def partial_result(self) -> GenerationResult:
        """What was delivered so far; ``truncated`` unless the session completed."""
        served_by = self.served_by or Candidate(
            provider=self.request.config.provider, model=self.request.config.model
        )
        return GenerationResult(
            content=self.content,
            usage=self.usage,
            finish_reason=self.finish_reason,
            served_by=served_by,
            truncated=self.state != SessionState.COMPLETED,
        )


class StreamEmitter:
    """Runs streaming sessions on top of the orchestrator.

    ``native`` forwards provider deltas; ``synthesized`` generates the full
    completion first and replays it word by word with a jittered delay.
    """

    def __init__(
        self,
        orchestrator,
        mode: str = "native",
        chunk_delay_ms: int = 20,
        chunk_jitter_ms: int = 20,
        deadline_s: Optional[float] = None,
        sleep=cancellable_sleep,
        jitter=None,
    ):
        if mode not in STREAM_MODES:
            raise ValueError(f"Unknown stream mode '{mode}'")
        self.orchestrator = orchestrator
        self.mode = mode
        self.chunk_delay_ms = chunk_delay_ms
        self.chunk_jitter_ms = chunk_jitter_ms
        self.deadline_s = deadline_s or None
        self._sleep = sleep
        self._jitter = jitter or random.uniform
        self._sessions: Dict[str, StreamSession] = {}

    @classmethod
    def from_config(cls, config_manager, orchestrator) -> "StreamEmitter":
        config = config_manager.get_active_config()
        stream_settings = config["stream_settings"]
        return cls(
            orchestrator,
            mode=stream_settings.get("mode", "native"),
            chunk_delay_ms=stream_settings.get("chunk_delay_ms", 20),
            chunk_jitter_ms=stream_settings.get("chunk_jitter_ms", 20),
            deadline_s=config["generation_settings"].get("request_deadline_s"),
        )

    def get_session(self, session_id: str) -> Optional[StreamSession]:
        return self._sessions.get(session_id)

    def start_stream(self, request: GenerationRequest, mode: Optional[str] = None) -> StreamSession:
        """Validates the request and starts a background session for it.

        Raises:
            ValidationError: Unknown provider/model pair; no session is created.
        """
        mode = mode or self.mode
        if mode not in STREAM_MODES:
            raise ValueError(f"Unknown stream mode '{mode}'")
        self.orchestrator.validate(request)

        session = StreamSession(request, mode)
        self._sessions[session.id] = session
        session._task = asyncio.create_task(self._run(session))
        logger.info(f"Stream session {session.id} started ({mode})", extra={"session_id": session.id})
        return session

    def cancel(self, session) -> bool:
        """Cancels a live session (object or id). Returns False if it already finished."""
        if isinstance(session, str):
            session = self._sessions.get(session)
        if session is None or session.is_finished:
            return False
        session.cancel_token.cancel()
        # A pending session sees the token on its first upstream call
        if session._task is not None and session.state == SessionState.STREAMING:
            session._task.cancel()
        logger.info(f"Stream session {session.id} cancellation requested")
        return True

    async def _run(self, session: StreamSession) -> None:
        session.state = SessionState.STREAMING
        session._emit(StreamEvent(type="start"))
        try:
            if self.deadline_s:
                try:
                    await asyncio.wait_for(self._pump(session), timeout=self.deadline_s)
                except asyncio.TimeoutError:
                    raise AllCandidatesExhausted(
                        DeadlineExceeded(f"stream exceeded the {self.deadline_s}s request deadline")
                    ) from None
            else:
                await self._pump(session)
        except asyncio.CancelledError:
            self._mark_cancelled(session)
            raise
        except GenerationCancelled:
            self._mark_cancelled(session)
        except AllCandidatesExhausted as e:
            self._fail(session, e, e.user_message, e.rate_limited)
        except UpstreamError as e:
            self._fail(session, e, e.message, e.rate_limited)
        except ChatCoreError as e:
            self._fail(session, e, str(e), False)
        else:
            session.state = SessionState.COMPLETED
            session._emit(StreamEvent(
                type="end",
                served_by=session.served_by,
                usage=session.usage,
                finish_reason=session.finish_reason,
            ))
            logger.info(
                f"Stream session {session.id} completed, served by {session.served_by}",
                extra={"session_id": session.id, "candidate": session.served_by},
            )
        finally:
            self._sessions.pop(session.id, None)

    @staticmethod
    def _mark_cancelled(session: StreamSession) -> None:
        session.state = SessionState.CANCELLED
        session._emit(StreamEvent(type="cancelled", served_by=session.served_by))
        logger.info(
            f"Stream session {session.id} cancelled after {len(session.deltas)} deltas",
            extra={"session_id": session.id},
        )

    @staticmethod
    def _fail(session: StreamSession, error: Exception, message: str, rate_limited: bool) -> None:
        session.state = SessionState.FAILED
        session.error = error
        session._emit(StreamEvent(
            type="error",
            message=message,
            served_by=session.served_by,
            rate_limited=rate_limited,
        ))
        logger.error(
            f"Stream session {session.id} failed after {len(session.deltas)} deltas: {error}",
            extra={"session_id": session.id},
        )

    async def _pump(self, session: StreamSession) -> None:
        if session.mode == "synthesized":
            await self._pump_synthesized(session)
        else:
            await self._pump_native(session)

    async def _pump_native(self, session: StreamSession) -> None:
        stream = self.orchestrator.stream(session.request, session.cancel_token)
        try:
            async for event in stream:
                session.served_by = event.served_by
                if event.type == "delta":
                    session._emit(event)
                elif event.type == "end":
                    session.usage = event.usage
                    session.finish_reason = event.finish_reason
        finally:
            await stream.aclose()

    async def _pump_synthesized(self, session: StreamSession) -> None:
        result = await self.orchestrator.generate(session.request, session.cancel_token)
        session.served_by = result.served_by
        session.usage = result.usage
        session.finish_reason = result.finish_reason
        for chunk in _WORD_CHUNK.findall(result.content):
            delay_ms = self.chunk_delay_ms + self._jitter(0, self.chunk_jitter_ms)
            await self._sleep(delay_ms / 1000.0, session.cancel_token)
            session._emit(StreamEvent(type="delta", content=chunk, served_by=result.served_by))
