"""Core domain models for multiplication-table practice."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FeedbackState(Enum):
    """What the quiz shows and whether it accepts input."""

    AWAITING_INPUT = "awaiting_input"
    CORRECT = "correct"
    WRONG = "wrong"


class Cue(Enum):
    """Semantic event tags for the audio collaborator."""

    CORRECT = "correct"
    WRONG = "wrong"
    SESSION_WON = "session_won"


@dataclass(frozen=True)
class Question:
    """One prompt: ``table x multiplier``."""

    table: int
    multiplier: int

    @property
    def product(self) -> int:
        return self.table * self.multiplier


@dataclass(frozen=True)
class QuestionResult:
    """Outcome of evaluating one submitted answer."""

    question: Question
    given: int
    correct: bool

    @property
    def expected(self) -> int:
        return self.question.product


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only projection of a quiz session for display."""

    table: int
    multiplier: int
    number: int
    total: int
    score: int
    feedback: FeedbackState
    pending_input: str
    active: bool

    @property
    def answer_slot_empty(self) -> bool:
        return not self.pending_input


@dataclass(frozen=True)
class StudyRow:
    """One line of a table in the study view."""

    table: int
    multiplier: int
    product: int


@dataclass(frozen=True)
class ChatMessage:
    """One message in the math fairy transcript."""

    role: str
    text: str
