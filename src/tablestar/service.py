"""Application service for quiz sessions, star rewards, and preferences."""

from __future__ import annotations

import logging
import os
import random
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from .fairy import DEFAULT_MODEL, FairyAssistant
from .models import Question, StudyRow
from .quiz import (
    CORRECT_FEEDBACK_DELAY,
    MULTIPLIERS,
    WRONG_FEEDBACK_DELAY,
    QuizSession,
    Scheduler,
    SubmitOutcome,
    validate_table,
)
from .settings import API_KEY, FAIRY_MODEL, SettingsStore

logger = logging.getLogger(__name__)

TABLES = tuple(range(1, 10))
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")


class GameService:
    """Coordinates the live quiz session, the star counter, and the math fairy."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        scheduler: Scheduler | None = None,
        rng: random.Random | None = None,
        correct_delay: float = CORRECT_FEEDBACK_DELAY,
        wrong_delay: float = WRONG_FEEDBACK_DELAY,
    ) -> None:
        """Initialize service with settings database path."""
        self.settings = SettingsStore(db_path)
        self._scheduler = scheduler
        self._rng = rng
        self._correct_delay = correct_delay
        self._wrong_delay = wrong_delay
        self._lock = threading.Lock()
        self._stars = 0
        self._session: QuizSession | None = None

    @property
    def stars(self) -> int:
        """Stars earned across finished quizzes in this game."""
        with self._lock:
            return self._stars

    @property
    def live_session(self) -> QuizSession | None:
        with self._lock:
            return self._session

    def tables(self) -> list[int]:
        """Return the tables offered on the home screen."""
        return list(TABLES)

    def study_rows(self, table: int) -> list[StudyRow]:
        """Return the full table for the study view."""
        table = validate_table(table)
        return [StudyRow(table=table, multiplier=m, product=table * m) for m in MULTIPLIERS]

    def start_quiz(
        self,
        table: int,
        order: Sequence[int] | None = None,
        on_complete: Callable[[int], None] | None = None,
    ) -> QuizSession:
        """Start a fresh session, replacing any live one."""
        session = QuizSession(
            table,
            order=order,
            scheduler=self._scheduler,
            rng=self._rng,
            correct_delay=self._correct_delay,
            wrong_delay=self._wrong_delay,
        )
        self.leave_quiz()
        session.on_complete(lambda final_score: self._award_stars(session, final_score))
        if on_complete is not None:
            session.on_complete(on_complete)
        with self._lock:
            self._session = session
        logger.info("Quiz started for table %d", table)
        return session

    def current_question(self, session: QuizSession) -> Question:
        return session.current_question()

    def submit_answer(self, session: QuizSession, raw_text: str) -> SubmitOutcome:
        return session.submit(raw_text)

    def on_complete(self, session: QuizSession, callback: Callable[[int], None]) -> Callable[[], None]:
        return session.on_complete(callback)

    def leave_quiz(self) -> None:
        """Abandon the live session without awarding stars."""
        with self._lock:
            session, self._session = self._session, None
        if session is not None:
            session.close()

    def _award_stars(self, session: QuizSession, final_score: int) -> None:
        with self._lock:
            self._stars += final_score
            if self._session is session:
                self._session = None
        logger.info("Awarded %d stars (total %d)", final_score, self._stars)

    def get_api_key(self) -> str | None:
        """Return stored API key, falling back to the environment."""
        stored = self.settings.get(API_KEY)
        if stored:
            return stored
        for name in API_KEY_ENV_VARS:
            value = os.environ.get(name, "").strip()
            if value:
                return value
        return None

    def set_api_key(self, value: str) -> None:
        """Store API key; a blank value clears it."""
        cleaned = value.strip()
        if cleaned:
            self.settings.set(API_KEY, cleaned)
        else:
            self.settings.delete(API_KEY)

    def get_fairy_model(self) -> str:
        return self.settings.get(FAIRY_MODEL) or DEFAULT_MODEL

    def set_fairy_model(self, value: str) -> None:
        cleaned = value.strip()
        if cleaned:
            self.settings.set(FAIRY_MODEL, cleaned)
        else:
            self.settings.delete(FAIRY_MODEL)

    def fairy(self) -> FairyAssistant:
        """Build a math fairy for the configured key."""
        api_key = self.get_api_key()
        if api_key is None:
            raise LookupError("No Gemini API key configured.")
        return FairyAssistant(api_key, model_name=self.get_fairy_model())

    def close(self) -> None:
        """Close resources."""
        self.leave_quiz()
        self.settings.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort cleanup for test/process teardown."""
        try:
            self.close()
        except Exception:
            pass
