"""Clinician-side consent status poller.

Asks a consent status authority "does patient X have valid consent" on a
fixed interval until consent is granted, the attempt ceiling is reached,
or the caller cancels. Each patient has at most one active poll, owned by
the poller instance as an explicit state object.

States::

    IDLE -> POLLING -> GRANTED | TIMED_OUT | CANCELLED

GRANTED is a latch: once observed it is never re-evaluated, and starting
a poll for a granted patient returns the latched state.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from app.core.errors import (
    ConsentPermissionDeniedError,
    ConsentPollTimeoutError,
    ConsentStatusError,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 3.0
MAX_POLL_ATTEMPTS = 40  # ~2 minutes at the default interval


class PollState(str, Enum):
    """Lifecycle state of a per-patient poll."""

    IDLE = "idle"
    POLLING = "polling"
    GRANTED = "granted"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class ConsentStatusResult(Protocol):
    """Status payload returned by an authority."""

    has_valid_consent: bool


class ConsentStatusAuthority(Protocol):
    """Trusted source of consent status."""

    async def check(self, patient_id: str) -> ConsentStatusResult:
        """Return current consent status for a patient.

        Raises:
            ConsentPermissionDeniedError: Caller may not see the patient yet
            ConsentNetworkError: Authority unreachable or replied with an error
        """
        ...


@dataclass(frozen=True)
class PollSnapshot:
    """Immutable view of a poll at a point in time."""

    patient_id: str
    state: PollState
    attempts: int = 0
    last_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (PollState.GRANTED, PollState.TIMED_OUT, PollState.CANCELLED)


class _PollSession:
    """Mutable state of one poll, owned by the poller."""

    def __init__(self, patient_id: str) -> None:
        self.patient_id = patient_id
        self.state = PollState.POLLING
        self.attempts = 0
        self.last_error: str | None = None
        self.task: asyncio.Task | None = None

    def snapshot(self) -> PollSnapshot:
        return PollSnapshot(
            patient_id=self.patient_id,
            state=self.state,
            attempts=self.attempts,
            last_error=self.last_error,
        )


class ConsentStatusPoller:
    """Runs at most one background status poll per patient.

    Args:
        authority: Consent status authority to query
        interval: Seconds between ticks
        max_attempts: Hard ceiling on authority calls per poll
        on_change: Called with a snapshot on every state transition
        sleep: Awaitable sleep used between ticks
    """

    def __init__(
        self,
        authority: ConsentStatusAuthority,
        interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        on_change: Callable[[PollSnapshot], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.authority = authority
        self.interval = interval
        self.max_attempts = max_attempts
        self.on_change = on_change
        self._sleep = sleep
        self._sessions: dict[str, _PollSession] = {}

    def state(self, patient_id: str) -> PollSnapshot:
        """Return the current snapshot for a patient."""
        session = self._sessions.get(patient_id)
        if session is None:
            return PollSnapshot(patient_id=patient_id, state=PollState.IDLE)
        return session.snapshot()

    def start(self, patient_id: str) -> PollSnapshot:
        """Start polling for a patient.

        A no-op if a poll is already running or consent was already
        granted for this patient. Must be called from a running event loop.
        """
        session = self._sessions.get(patient_id)
        if session is not None and session.state in (PollState.POLLING, PollState.GRANTED):
            return session.snapshot()

        session = _PollSession(patient_id)
        self._sessions[patient_id] = session
        session.task = asyncio.create_task(
            self._run(session),
            name=f"consent-poll:{patient_id}",
        )
        logger.info("Consent poll started", extra={"patient_id": patient_id})
        self._notify(session)
        return session.snapshot()

    def cancel(self, patient_id: str) -> PollSnapshot:
        """Cancel an active poll.

        Takes effect immediately: the per-patient guard is released before
        returning and no further authority call is made. Cancelling a
        finished poll changes nothing.
        """
        session = self._sessions.get(patient_id)
        if session is None or session.state is not PollState.POLLING:
            return self.state(patient_id)

        session.state = PollState.CANCELLED
        if session.task is not None:
            session.task.cancel()
        logger.info(
            "Consent poll cancelled",
            extra={"patient_id": patient_id, "attempt": session.attempts},
        )
        self._notify(session)
        return session.snapshot()

    def cancel_all(self) -> None:
        """Cancel every active poll (e.g. on surface teardown)."""
        for patient_id in list(self._sessions):
            self.cancel(patient_id)

    def forget(self, patient_id: str) -> None:
        """Drop any state for a patient, cancelling an active poll first."""
        self.cancel(patient_id)
        self._sessions.pop(patient_id, None)

    async def wait(self, patient_id: str) -> PollSnapshot:
        """Wait for the patient's poll to finish and return its final snapshot."""
        session = self._sessions.get(patient_id)
        if session is None or session.task is None:
            return self.state(patient_id)

        task = session.task
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
        return session.snapshot()

    async def wait_for_grant(self, patient_id: str) -> PollSnapshot:
        """Start (if needed) and wait for a poll.

        Raises:
            ConsentPollTimeoutError: If the attempt ceiling was reached
        """
        self.start(patient_id)
        snapshot = await self.wait(patient_id)
        if snapshot.state is PollState.TIMED_OUT:
            raise ConsentPollTimeoutError(patient_id, snapshot.attempts)
        return snapshot

    async def aclose(self) -> None:
        """Cancel all polls and wait for their tasks to exit."""
        self.cancel_all()
        tasks = {s.task for s in self._sessions.values() if s.task is not None}
        if tasks:
            await asyncio.wait(tasks)

    async def _run(self, session: _PollSession) -> None:
        try:
            while session.state is PollState.POLLING:
                await self._sleep(self.interval)
                if session.state is not PollState.POLLING:
                    return
                await self._tick(session)
        except asyncio.CancelledError:
            if session.state is not PollState.CANCELLED:
                raise
        finally:
            if session.state is PollState.POLLING:
                # Unexpected failure; never leave the guard held
                self._transition(session, PollState.CANCELLED)

    async def _tick(self, session: _PollSession) -> None:
        session.attempts += 1
        result = None
        try:
            result = await self.authority.check(session.patient_id)
        except ConsentPermissionDeniedError:
            # No record is visible yet; keep waiting
            logger.debug(
                "Consent status not visible yet",
                extra={"patient_id": session.patient_id, "attempt": session.attempts},
            )
        except ConsentStatusError as e:
            # Network, throttling and malformed replies all retry on the next tick
            session.last_error = str(e)
            logger.warning(
                f"Consent status check failed: {e}",
                extra={"patient_id": session.patient_id, "attempt": session.attempts},
            )

        if session.state is not PollState.POLLING:
            return

        if result is not None and result.has_valid_consent:
            self._transition(session, PollState.GRANTED)
        elif session.attempts >= self.max_attempts:
            self._transition(session, PollState.TIMED_OUT)

    def _transition(self, session: _PollSession, new_state: PollState) -> None:
        if session.state is not PollState.POLLING:
            return
        session.state = new_state
        logger.info(
            f"Consent poll {new_state.value}",
            extra={"patient_id": session.patient_id, "attempt": session.attempts},
        )
        self._notify(session)

    def _notify(self, session: _PollSession) -> None:
        if self.on_change is not None:
            self.on_change(session.snapshot())
