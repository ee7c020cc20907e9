"""Timed, navigable test-taking session.

One ``AttemptEngine`` owns at most one ``AttemptSession`` and one countdown.
Selecting an option only changes the pending selection; the selection is
committed into the answer sheet, and the question's palette status is
recomputed, when the user navigates away or submits.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
import logging
from threading import RLock
import time
from typing import Callable

from prep_app.constants.messages import NO_ACTIVE_ATTEMPT_MESSAGE, TIME_UP_MESSAGE
from prep_app.core.models import (
    Attempt,
    ClearedMarkPolicy,
    Question,
    QuestionStatus,
    Test,
    utc_now,
)
from prep_app.core.scoring import score_answers
from prep_app.core.services.countdown_timer import CountdownTimer

logger = logging.getLogger(__name__)

_MARKED_STATUSES = (QuestionStatus.MARKED, QuestionStatus.MARKED_AND_ANSWERED)


class AttemptError(RuntimeError):
    """Raised when an attempt operation cannot be applied."""


class NoActiveAttemptError(AttemptError):
    """Raised when an operation needs an active attempt and there is none."""


@dataclass(slots=True)
class AttemptSession:
    """Mutable state of the attempt in progress."""

    test: Test
    answers: list[int | None]
    statuses: list[QuestionStatus]
    time_per_question: list[float]
    current_index: int = 0
    selected_option: int | None = None
    question_started_at: float = 0.0
    started_at: datetime = field(default_factory=utc_now)

    @property
    def question_count(self) -> int:
        return len(self.test.questions)

    @property
    def current_question(self) -> Question:
        return self.test.questions[self.current_index]


@dataclass(slots=True)
class PaletteEntry:
    index: int
    status: QuestionStatus
    is_current: bool


@dataclass(slots=True)
class AttemptSnapshot:
    """Read-only view of the active attempt for rendering."""

    test_id: str
    test_name: str
    question_index: int
    question_count: int
    question: Question
    selected_option: int | None
    remaining_seconds: int
    palette: list[PaletteEntry]
    status_counts: dict[QuestionStatus, int]


class AttemptEngine:
    """Controller for a single user's attempt, timer and submission."""

    def __init__(
        self,
        record_attempt: Callable[[Attempt], Attempt | None],
        cleared_mark_policy: ClearedMarkPolicy = ClearedMarkPolicy.REVERT_TO_MARKED,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
        background_timer: bool = True,
    ) -> None:
        self._lock = RLock()
        self._record_attempt = record_attempt
        self._cleared_mark_policy = cleared_mark_policy
        self._clock = clock
        self._now = now
        self._background_timer = background_timer
        self._session: AttemptSession | None = None
        self._timer: CountdownTimer | None = None
        self._notices: list[str] = []

    # --- Lifecycle ---

    def start(self, test: Test) -> AttemptSession:
        """Begin an attempt on a frozen copy of ``test``, replacing any active one."""
        if not test.questions:
            raise AttemptError("Cannot start a test without questions.")
        if test.duration <= 0:
            raise AttemptError("Test duration must be positive.")

        with self._lock:
            self._stop_timer()
            snapshot = copy.deepcopy(test)
            count = len(snapshot.questions)
            statuses = [QuestionStatus.NOT_VISITED] * count
            statuses[0] = QuestionStatus.NOT_ANSWERED
            self._session = AttemptSession(
                test=snapshot,
                answers=[None] * count,
                statuses=statuses,
                time_per_question=[0.0] * count,
                question_started_at=self._clock(),
                started_at=self._now(),
            )
            self._notices.clear()
            timer = CountdownTimer(snapshot.duration * 60, on_expire=lambda: self._handle_time_up(timer))
            self._timer = timer
            timer.start(run_in_background=self._background_timer)
            logger.info("Started attempt on %r (%d questions)", snapshot.name, count)
            return self._session

    def has_active_attempt(self) -> bool:
        with self._lock:
            return self._session is not None

    def abandon(self, confirmed: bool) -> bool:
        """Discard the attempt without recording it. Requires explicit confirmation."""
        if not confirmed:
            return False
        with self._lock:
            if self._session is None:
                return False
            logger.info("Abandoned attempt on %r", self._session.test.name)
            self._discard()
            return True

    def submit(self) -> Attempt:
        """Score the attempt, hand it to the history and clear the session."""
        with self._lock:
            if self._session is None:
                self._discard()
                raise NoActiveAttemptError(NO_ACTIVE_ATTEMPT_MESSAGE)
            attempt = self._close_session()
        return self._store_attempt(attempt)

    # --- Answering ---

    def select_option(self, option_index: int) -> None:
        with self._lock:
            session = self._require_session()
            option_count = len(session.current_question.options)
            if not 0 <= option_index < option_count:
                raise ValueError(f"Option index must be between 0 and {option_count - 1}.")
            session.selected_option = option_index

    def clear_selection(self) -> None:
        with self._lock:
            self._require_session().selected_option = None

    def mark_for_review(self) -> None:
        """Flag the current question, then move to the next one."""
        with self._lock:
            session = self._require_session()
            index = session.current_index
            if session.selected_option is not None:
                session.statuses[index] = QuestionStatus.MARKED_AND_ANSWERED
            else:
                session.statuses[index] = QuestionStatus.MARKED
            self.navigate(index + 1)

    # --- Navigation ---

    def navigate(self, target_index: int) -> int:
        """Commit the current question and move to ``target_index`` when it exists."""
        with self._lock:
            session = self._require_session()
            self._accumulate_time(session)
            self._commit_selection(session)

            if 0 <= target_index < session.question_count:
                session.current_index = target_index
                if session.statuses[target_index] == QuestionStatus.NOT_VISITED:
                    session.statuses[target_index] = QuestionStatus.NOT_ANSWERED
                session.selected_option = session.answers[target_index]
            return session.current_index

    def next(self) -> int:
        with self._lock:
            return self.navigate(self._require_session().current_index + 1)

    def previous(self) -> int:
        with self._lock:
            return self.navigate(self._require_session().current_index - 1)

    # --- Timer ---

    def tick(self) -> bool:
        """Advance the countdown by one second; used when no background thread runs."""
        with self._lock:
            timer = self._timer
        if timer is None:
            return False
        return timer.tick()

    def remaining_seconds(self) -> int:
        with self._lock:
            return self._timer.remaining_seconds if self._timer else 0

    # --- Views ---

    def palette(self) -> list[PaletteEntry]:
        with self._lock:
            session = self._require_session()
            return [
                PaletteEntry(index=i, status=status, is_current=i == session.current_index)
                for i, status in enumerate(session.statuses)
            ]

    def snapshot(self) -> AttemptSnapshot:
        with self._lock:
            session = self._require_session()
            counts = {status: 0 for status in QuestionStatus}
            for status in session.statuses:
                counts[status] += 1
            return AttemptSnapshot(
                test_id=session.test.id,
                test_name=session.test.name,
                question_index=session.current_index,
                question_count=session.question_count,
                question=session.current_question,
                selected_option=session.selected_option,
                remaining_seconds=self.remaining_seconds(),
                palette=self.palette(),
                status_counts=counts,
            )

    def drain_notices(self) -> list[str]:
        with self._lock:
            notices = list(self._notices)
            self._notices.clear()
            return notices

    # --- Internals ---

    def _handle_time_up(self, timer: CountdownTimer) -> None:
        with self._lock:
            # Only the countdown of the current session may submit it.
            if self._session is None or self._timer is not timer:
                return
            logger.warning("Time expired on %r; submitting automatically.", self._session.test.name)
            self._notices.append(TIME_UP_MESSAGE)
            attempt = self._close_session()
        self._store_attempt(attempt)

    def _close_session(self) -> Attempt:
        """Score the active session and clear it. Caller holds the lock."""
        session = self._session
        remaining = self._timer.remaining_seconds if self._timer else 0
        self._stop_timer()
        try:
            self._accumulate_time(session)
            self._commit_selection(session)
            return self._build_attempt(session, remaining)
        finally:
            self._discard()

    def _store_attempt(self, attempt: Attempt) -> Attempt:
        recorded = self._record_attempt(attempt)
        logger.info(
            "Submitted attempt on %r: %d correct, %d incorrect, %d unanswered (%.2f%%)",
            attempt.test_name,
            attempt.correct_answers,
            attempt.incorrect_answers,
            attempt.unanswered,
            attempt.score,
        )
        return recorded or attempt

    def _require_session(self) -> AttemptSession:
        if self._session is None:
            raise NoActiveAttemptError(NO_ACTIVE_ATTEMPT_MESSAGE)
        return self._session

    def _accumulate_time(self, session: AttemptSession) -> None:
        now = self._clock()
        session.time_per_question[session.current_index] += max(0.0, now - session.question_started_at)
        session.question_started_at = now

    def _commit_selection(self, session: AttemptSession) -> None:
        index = session.current_index
        answer = session.selected_option
        status = session.statuses[index]
        session.answers[index] = answer

        if answer is not None:
            if status in _MARKED_STATUSES:
                session.statuses[index] = QuestionStatus.MARKED_AND_ANSWERED
            else:
                session.statuses[index] = QuestionStatus.ANSWERED
        elif status == QuestionStatus.MARKED_AND_ANSWERED:
            if self._cleared_mark_policy == ClearedMarkPolicy.REVERT_TO_MARKED:
                session.statuses[index] = QuestionStatus.MARKED
        elif status != QuestionStatus.MARKED:
            session.statuses[index] = QuestionStatus.NOT_ANSWERED

    def _build_attempt(self, session: AttemptSession, remaining_seconds: int) -> Attempt:
        test = session.test
        summary = score_answers(
            test.questions, session.answers, test.marks_per_question, test.negative_marking
        )
        return Attempt(
            test_id=test.id,
            test_name=test.name,
            user_answers=list(session.answers),
            time_taken=max(0, test.duration * 60 - remaining_seconds),
            time_per_question=list(session.time_per_question),
            completed_at=self._now(),
            score=summary.percentage,
            total_questions=len(test.questions),
            correct_answers=summary.correct,
            incorrect_answers=summary.incorrect,
            unanswered=summary.unanswered,
            full_test=test,
        )

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _discard(self) -> None:
        self._stop_timer()
        self._session = None
