"""
Live (WebSocket) mode for a candidate session.

The server owns the countdown: one ``Countdown`` is restarted for every question
and raced against the next candidate event. Whichever finishes first decides how
the question is closed (answered, timed out, or the session ended by a signal).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from fastapi import WebSocket

from ..core.exceptions import NotFound, SessionConflict, ValidationError
from ..schemas.session import CandidateQuestion, present_state
from .countdown import Countdown
from .integrity import EnvironmentSignal, IntegrityMonitor
from .session_engine import SessionEngine
from .session_state import Completed, InProgress, SessionState

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class AnswerSelected:
    question_id: str
    answer: str


@dataclass(frozen=True)
class SignalReceived:
    signal: EnvironmentSignal
    metadata: Optional[Dict[str, str]] = field(default=None)


LiveEvent = Union[AnswerSelected, SignalReceived]


class LiveEventSource(Protocol):
    async def next_event(self) -> LiveEvent:
        ...


class WebSocketEventSource:
    """
    Reads ``{"type": "answer", "questionId": ..., "answer": ...}`` and
    ``{"type": "signal", "signal": ..., "metadata": {...}}`` frames.
    Unknown frames are skipped. A disconnect surfaces as ``WebSocketDisconnect``.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def next_event(self) -> LiveEvent:
        while True:
            message = await self.websocket.receive_json()
            if not isinstance(message, dict):
                continue
            kind = message.get("type")
            if kind == "answer":
                return AnswerSelected(
                    question_id=str(message.get("questionId", "")),
                    answer=str(message.get("answer", "")),
                )
            if kind == "signal":
                try:
                    signal = EnvironmentSignal(message.get("signal"))
                except ValueError:
                    logger.warning(f"[Live] Unknown signal {message.get('signal')!r}, ignoring")
                    continue
                metadata = message.get("metadata")
                return SignalReceived(signal=signal, metadata=metadata if isinstance(metadata, dict) else None)
            logger.debug(f"[Live] Ignoring frame of type {kind!r}")


class LiveSession:
    def __init__(
        self,
        engine: SessionEngine,
        monitor: IntegrityMonitor,
        candidate_id: str,
        events: LiveEventSource,
        send: Sender,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.engine = engine
        self.monitor = monitor
        self.candidate_id = candidate_id
        self.events = events
        self.send = send
        self.countdown = Countdown(engine.period_seconds, sleep=sleep)
        self._pending: Optional[asyncio.Task] = None

    async def run(self) -> Completed:
        candidate = await self.engine.repository.get_candidate(self.candidate_id)
        if candidate is None:
            raise NotFound("Session not found")
        state = await self.engine.get_state(candidate)
        try:
            while isinstance(state, InProgress):
                state = await self._run_question(state)
        finally:
            if self._pending is not None and not self._pending.done():
                self._pending.cancel()
        await self.send({"type": "completed", "state": present_state(state).model_dump()})
        return state

    async def _run_question(self, state: InProgress) -> SessionState:
        questions = await self.engine.repository.get_questions_by_ids([state.question_id])
        if not questions:
            raise NotFound("Question not found")
        await self.send(
            {
                "type": "question",
                "state": present_state(state).model_dump(),
                "question": CandidateQuestion.from_question(questions[0]).model_dump(),
            }
        )

        self.countdown.restart(state.remaining)
        timer = asyncio.create_task(self.countdown.run(self._tick))
        try:
            while True:
                if self._pending is None:
                    self._pending = asyncio.create_task(self.events.next_event())
                done, _ = await asyncio.wait({timer, self._pending}, return_when=asyncio.FIRST_COMPLETED)

                if self._pending in done:
                    event = self._pending.result()
                    self._pending = None
                    next_state = await self._handle_event(state, event)
                    if next_state is not None:
                        return next_state
                    if not timer.done():
                        continue

                # The countdown for this question ran out
                timer.result()
                return await self._expire(state)
        finally:
            if not timer.done():
                timer.cancel()

    async def _tick(self, remaining: int) -> None:
        await self.send({"type": "tick", "remaining": remaining})

    async def _handle_event(self, state: InProgress, event: LiveEvent) -> Optional[SessionState]:
        """Returns the next state when the event closed the current question."""
        if isinstance(event, SignalReceived):
            return await self.monitor.observe(self.candidate_id, event.signal, event.metadata)

        try:
            return await self.engine.submit_answer(
                self.candidate_id,
                event.question_id,
                event.answer,
                remaining=self.countdown.remaining,
            )
        except (ValidationError, SessionConflict) as exc:
            await self.send({"type": "error", "code": exc.code, "message": exc.message})
            if isinstance(exc, SessionConflict):
                return await self._reload()
            return None

    async def _expire(self, state: InProgress) -> SessionState:
        try:
            return await self.engine.expire_question(self.candidate_id, state.question_id)
        except SessionConflict:
            # Moved on through another channel (REST answer, signal) meanwhile
            return await self._reload()

    async def _reload(self) -> SessionState:
        candidate = await self.engine.repository.get_candidate(self.candidate_id)
        if candidate is None:
            raise NotFound("Session not found")
        return await self.engine.get_state(candidate)
