"""Quiz session engine: question ordering, answer checks, and timed feedback."""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Protocol, TypeVar

from .models import Cue, FeedbackState, Question, QuestionResult, SessionSnapshot

logger = logging.getLogger(__name__)

MULTIPLIERS = tuple(range(1, 10))
CORRECT_FEEDBACK_DELAY = 1.0
WRONG_FEEDBACK_DELAY = 1.5

T = TypeVar("T")


class SubmitOutcome(Enum):
    """Result of one submission, telling the caller which cue to render."""

    CORRECT = "correct"
    WRONG = "wrong"
    IGNORED = "ignored"
    REJECTED = "rejected"


class SessionFinishedError(RuntimeError):
    """Raised when reading the question of a session that is no longer active."""


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything that can run a callback after a delay, e.g. an asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """Run delayed callbacks on daemon ``threading.Timer`` threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


def generate_order(rng: random.Random | None = None) -> tuple[int, ...]:
    """Return a uniformly random permutation of the multipliers 1..9.

    Fisher-Yates: walk from the last slot down to the second, swapping each
    slot with a uniformly drawn slot at or before it.
    """
    randint = rng.randint if rng is not None else random.randint
    order = list(MULTIPLIERS)
    for i in range(len(order) - 1, 0, -1):
        j = randint(0, i)
        order[i], order[j] = order[j], order[i]
    return tuple(order)


def validate_table(table: object) -> int:
    """Return table when it is a positive integer, else raise ValueError."""
    if isinstance(table, bool) or not isinstance(table, int) or table < 1:
        raise ValueError(f"Table must be a positive integer, got {table!r}.")
    return table


def validate_order(order: Sequence[int]) -> tuple[int, ...]:
    """Return order as a tuple when it is a permutation of 1..9."""
    values = tuple(order)
    if len(values) != len(MULTIPLIERS) or set(values) != set(MULTIPLIERS):
        raise ValueError(f"Question order must be a permutation of 1..9, got {values!r}.")
    return values


def parse_answer(raw: str) -> int | None:
    """Parse submitted text as an integer, or return None when it is not one."""
    text = raw.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


class QuizSession:
    """One practice round covering all nine multipliers of a table.

    The session only accepts answers while awaiting input. A correct answer
    scores, shows feedback for ``correct_delay`` seconds and then moves on (or
    completes the round on the last question). A wrong answer shows feedback
    for ``wrong_delay`` seconds and then asks the same question again.

    Feedback timers run through ``scheduler``. Every mutation holds the
    session lock, so timer threads and the caller never interleave.
    """

    def __init__(
        self,
        table: int,
        *,
        order: Sequence[int] | None = None,
        scheduler: Scheduler | None = None,
        rng: random.Random | None = None,
        correct_delay: float = CORRECT_FEEDBACK_DELAY,
        wrong_delay: float = WRONG_FEEDBACK_DELAY,
    ) -> None:
        self._table = validate_table(table)
        self._order = generate_order(rng) if order is None else validate_order(order)
        self._position = 0
        self._score = 0
        self._feedback = FeedbackState.AWAITING_INPUT
        self._pending_input = ""
        self._active = True

        self._scheduler: Scheduler = scheduler if scheduler is not None else ThreadingScheduler()
        self._correct_delay = correct_delay
        self._wrong_delay = wrong_delay
        self._lock = threading.RLock()
        self._timer: TimerHandle | None = None
        self._generation = 0

        self._state_listeners: list[Callable[[SessionSnapshot], None]] = []
        self._cue_listeners: list[Callable[[Cue], None]] = []
        self._result_listeners: list[Callable[[QuestionResult], None]] = []
        self._complete_listeners: list[Callable[[int], None]] = []
        logger.debug("Started session for table %d with order %s", self._table, self._order)

    @property
    def table(self) -> int:
        return self._table

    @property
    def order(self) -> tuple[int, ...]:
        return self._order

    @property
    def position(self) -> int:
        return self._position

    @property
    def score(self) -> int:
        return self._score

    @property
    def feedback(self) -> FeedbackState:
        return self._feedback

    @property
    def pending_input(self) -> str:
        return self._pending_input

    @property
    def active(self) -> bool:
        return self._active

    def current_question(self) -> Question:
        """Return the question to render; only valid while the session is active."""
        with self._lock:
            if not self._active:
                raise SessionFinishedError("Quiz session has already finished.")
            return Question(table=self._table, multiplier=self._order[self._position])

    def snapshot(self) -> SessionSnapshot:
        """Return a consistent read-only view of the session."""
        with self._lock:
            return SessionSnapshot(
                table=self._table,
                multiplier=self._order[self._position],
                number=self._position + 1,
                total=len(self._order),
                score=self._score,
                feedback=self._feedback,
                pending_input=self._pending_input,
                active=self._active,
            )

    def set_pending_input(self, text: str) -> bool:
        """Replace the typed answer; refused while feedback is showing."""
        with self._lock:
            if not self._active or self._feedback is not FeedbackState.AWAITING_INPUT:
                return False
            self._pending_input = text
            self._notify()
            return True

    def submit(self, raw: str | None = None) -> SubmitOutcome:
        """Evaluate ``raw`` (or the pending input) against the current question."""
        with self._lock:
            if not self._active or self._feedback is not FeedbackState.AWAITING_INPUT:
                return SubmitOutcome.IGNORED
            text = self._pending_input if raw is None else raw
            value = parse_answer(text)
            if value is None:
                return SubmitOutcome.REJECTED

            self._pending_input = text
            question = Question(table=self._table, multiplier=self._order[self._position])
            result = QuestionResult(question=question, given=value, correct=value == question.product)
            if result.correct:
                self._score += 1
                self._feedback = FeedbackState.CORRECT
                outcome, cue = SubmitOutcome.CORRECT, Cue.CORRECT
                delay, follow_up = self._correct_delay, self._after_correct
            else:
                self._feedback = FeedbackState.WRONG
                outcome, cue = SubmitOutcome.WRONG, Cue.WRONG
                delay, follow_up = self._wrong_delay, self._after_wrong

            self._emit(self._result_listeners, result)
            self._emit(self._cue_listeners, cue)
            self._notify()
            self._schedule(delay, follow_up)
            return outcome

    def close(self) -> None:
        """Abandon the session; pending feedback timers become no-ops."""
        with self._lock:
            if not self._active:
                return
            self._active = False
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            logger.info("Abandoned session for table %d at question %d", self._table, self._position + 1)

    def subscribe(self, listener: Callable[[SessionSnapshot], None]) -> Callable[[], None]:
        """Call listener with a snapshot after every state change."""
        return self._add_listener(self._state_listeners, listener)

    def on_cue(self, listener: Callable[[Cue], None]) -> Callable[[], None]:
        return self._add_listener(self._cue_listeners, listener)

    def on_result(self, listener: Callable[[QuestionResult], None]) -> Callable[[], None]:
        return self._add_listener(self._result_listeners, listener)

    def on_complete(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """Call listener once with the final score when the last answer settles."""
        return self._add_listener(self._complete_listeners, listener)

    def _schedule(self, delay: float, follow_up: Callable[[], None]) -> None:
        self._generation += 1
        generation = self._generation

        def fire() -> None:
            with self._lock:
                if not self._active or generation != self._generation:
                    return
                follow_up()

        self._timer = self._scheduler.call_later(delay, fire)

    def _after_correct(self) -> None:
        if self._position == len(self._order) - 1:
            self._active = False
            self._timer = None
            final_score = self._score
            logger.info("Session for table %d completed with score %d", self._table, final_score)
            self._emit(self._cue_listeners, Cue.SESSION_WON)
            self._emit(self._complete_listeners, final_score)
            self._notify()
            return
        self._position += 1
        self._pending_input = ""
        self._feedback = FeedbackState.AWAITING_INPUT
        self._notify()

    def _after_wrong(self) -> None:
        self._feedback = FeedbackState.AWAITING_INPUT
        self._notify()

    def _notify(self) -> None:
        if self._state_listeners:
            self._emit(self._state_listeners, self.snapshot())

    def _add_listener(self, listeners: list[Callable[[T], None]], listener: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in listeners:
                    listeners.remove(listener)

        return remove

    @staticmethod
    def _emit(listeners: list[Callable[[T], None]], value: T) -> None:
        # A failing listener must not leave the session without its timer.
        for listener in list(listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Quiz listener %r failed on %r", listener, value)
