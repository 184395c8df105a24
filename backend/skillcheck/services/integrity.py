"""
Integrity monitor.

Consumes environment signals from the candidate's browsing context and ends the
session early when the page loses visibility. This is a deterrent only: it cannot
see a second device or a camera pointed at the screen, it only enforces what the
single browsing context reports.
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from ..core.exceptions import DeviceNotAllowed, NotFound, PersistenceError
from ..models import IntegrityEvent
from .locks import CandidateLocks, candidate_locks
from .scoring import ScoringFinalizer
from .session_state import Completed, CompletionReason

logger = logging.getLogger(__name__)


class EnvironmentSignal(str, Enum):
    VISIBILITY_HIDDEN = "visibility_hidden"
    VISIBILITY_VISIBLE = "visibility_visible"
    COPY_ATTEMPT = "copy_attempt"
    CONTEXT_MENU = "context_menu"
    SCREENSHOT_ATTEMPT = "screenshot_attempt"


TERMINATING_SIGNALS = {EnvironmentSignal.VISIBILITY_HIDDEN}

SIGNAL_LABELS: Dict[str, str] = {
    EnvironmentSignal.VISIBILITY_HIDDEN.value: "Left the assessment tab",
    EnvironmentSignal.VISIBILITY_VISIBLE.value: "Returned to the assessment tab",
    EnvironmentSignal.COPY_ATTEMPT.value: "Copy attempt blocked",
    EnvironmentSignal.CONTEXT_MENU.value: "Right click blocked",
    EnvironmentSignal.SCREENSHOT_ATTEMPT.value: "Screenshot shortcut blocked",
}

SECURITY_RULES = [
    "Leaving the tab or switching apps ends the assessment immediately",
    "Copying text and right click are disabled",
    "Screenshot shortcuts are blocked and reported",
    "Each question has its own timer and you cannot go back",
]


class SignalSource(Protocol):
    async def next_signal(self) -> EnvironmentSignal:
        ...


class QueueSignalSource:
    """Signal source fed by whatever transport carries the browser events."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[EnvironmentSignal]" = asyncio.Queue()

    def emit(self, signal: EnvironmentSignal) -> None:
        self._queue.put_nowait(signal)

    async def next_signal(self) -> EnvironmentSignal:
        return await self._queue.get()


# ----------------------------------------------------------------------------
# Device gate
# ----------------------------------------------------------------------------

_MOBILE_UA = re.compile(r"Mobi|Android|iPhone|iPod|Windows Phone", re.IGNORECASE)
_TABLET_UA = re.compile(r"iPad|Tablet", re.IGNORECASE)


def detect_form_factor(user_agent: Optional[str]) -> Optional[str]:
    if not user_agent:
        return None
    if _TABLET_UA.search(user_agent):
        return "tablet"
    if _MOBILE_UA.search(user_agent):
        return "mobile"
    return "desktop"


class DevicePolicy:
    def __init__(self, require_mobile: bool = False) -> None:
        self.require_mobile = require_mobile

    def ensure_allowed(self, form_factor: Optional[str]) -> None:
        if not self.require_mobile:
            return
        if form_factor not in {"mobile", "tablet"}:
            logger.info(f"[Integrity] Refusing session start from form factor {form_factor!r}")
            raise DeviceNotAllowed()


# ----------------------------------------------------------------------------
# Monitor
# ----------------------------------------------------------------------------

def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class IntegrityMonitor:
    def __init__(
        self,
        repository: Any,
        finalizer: ScoringFinalizer,
        locks: CandidateLocks = candidate_locks,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self.repository = repository
        self.finalizer = finalizer
        self.locks = locks
        self.clock = clock

    async def observe(
        self,
        candidate_id: str,
        signal: EnvironmentSignal,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Optional[Completed]:
        """
        Handle one signal. Returns the completed state when this signal ended the session,
        None when the session keeps going (or had already ended).
        """
        async with self.locks.get(candidate_id):
            candidate = await self.repository.get_candidate(candidate_id)
            if candidate is None:
                raise NotFound("Candidate not found")

            terminate = signal in TERMINATING_SIGNALS and not candidate.is_completed
            outcome: Optional[Completed] = None
            if terminate:
                logger.warning(f"[Integrity] {signal.value} for candidate {candidate_id}, ending session")
                outcome = await self.finalizer.finalize(candidate_id, CompletionReason.FORCED)
                # Natural completion may have landed first, then the session was not ours to end
                if outcome.reason != CompletionReason.FORCED.value:
                    terminate = False
                    outcome = None

            event = IntegrityEvent(
                assessmentId=candidate.assessmentId,
                candidateId=candidate_id,
                signal=signal.value,
                terminated=terminate,
                metadata=metadata,
                occurredAt=self.clock(),
            )
            try:
                await self.repository.record_integrity_event(event)
            except PersistenceError as exc:
                logger.error(f"[Integrity] Could not log {signal.value} for candidate {candidate_id}: {exc}")

            return outcome

    async def watch(self, candidate_id: str, source: SignalSource) -> Completed:
        """Consume ``source`` until the session is completed."""
        while True:
            signal = await source.next_signal()
            outcome = await self.observe(candidate_id, signal)
            if outcome is not None:
                return outcome
            candidate = await self.repository.get_candidate(candidate_id)
            if candidate is not None and candidate.is_completed:
                return await self.finalizer.completed_state(candidate)
