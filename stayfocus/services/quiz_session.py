"""In-progress simulation (quiz) state: idle → loading → reviewing → results."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from stayfocus.services.statistics import round2
from stayfocus.store.models import (
    AttemptRecord, QuizQuestion, format_timestamp, parse_timestamp, utc_now,
)


class QuizStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    REVIEWING = "reviewing"
    RESULTS = "results"


class QuizSessionError(Exception):
    """Operation not allowed in the current session state."""
    pass


class IncompleteAnswersError(QuizSessionError):
    """finalize() called while some questions have no answer."""

    def __init__(self, unanswered: List[str]):
        super().__init__("not all questions answered")
        self.unanswered = unanswered


class QuizSession:
    """State of one simulation being taken by one user."""

    def __init__(self):
        self.status = QuizStatus.IDLE
        self.simulation_id: Optional[str] = None
        self.title: Optional[str] = None
        self.questions: List[QuizQuestion] = []
        self.answers: Dict[str, str] = {}
        self.current_index = 0
        self.started_at: Optional[datetime] = None
        self.result: Optional[AttemptRecord] = None

    def _require(self, *statuses: QuizStatus) -> None:
        if self.status not in statuses:
            allowed = ", ".join(s.value for s in statuses)
            raise QuizSessionError(f"Invalid state {self.status.value}, expected {allowed}")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def begin_loading(self) -> None:
        self._require(QuizStatus.IDLE)
        self.status = QuizStatus.LOADING

    def load(
        self,
        questions: List[QuizQuestion],
        simulation_id: str,
        title: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        """Start reviewing a fresh set of questions (index 0, no answers)."""
        self._require(QuizStatus.LOADING)
        if not questions:
            self.status = QuizStatus.IDLE
            raise QuizSessionError("Simulation has no questions")

        self.questions = list(questions)
        self.simulation_id = simulation_id
        self.title = title
        self.answers = {}
        self.current_index = 0
        self.started_at = started_at or utc_now()
        self.result = None
        self.status = QuizStatus.REVIEWING

    def fail_loading(self) -> None:
        """Loading failed; the caller reports the error."""
        self._require(QuizStatus.LOADING)
        self.status = QuizStatus.IDLE

    # ------------------------------------------------------------------
    # Reviewing
    # ------------------------------------------------------------------

    def _question(self, question_id: str) -> QuizQuestion:
        for question in self.questions:
            if question.id == question_id:
                return question
        raise QuizSessionError(f"Unknown question: {question_id}")

    @property
    def current_question(self) -> Optional[QuizQuestion]:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    def answer(self, question_id: str, choice: str) -> None:
        """Record (or overwrite) the answer; the index does not move."""
        self._require(QuizStatus.REVIEWING)
        question = self._question(str(question_id))
        if question.options and choice not in question.options:
            raise QuizSessionError(f"Invalid option {choice!r} for question {question_id}")
        self.answers[question.id] = choice

    def navigate(self, index: int) -> bool:
        """Jump to a question. Out-of-range indexes are ignored (no wraparound)."""
        self._require(QuizStatus.REVIEWING)
        if 0 <= index < len(self.questions):
            self.current_index = index
            return True
        return False

    def next(self) -> bool:
        return self.navigate(self.current_index + 1)

    def previous(self) -> bool:
        return self.navigate(self.current_index - 1)

    def unanswered(self) -> List[str]:
        return [q.id for q in self.questions if q.id not in self.answers]

    def is_complete(self) -> bool:
        return bool(self.questions) and not self.unanswered()

    def progress(self) -> Dict[str, int]:
        return {
            "answered": len(self.answers),
            "total": len(self.questions),
            "current": self.current_index + 1,
        }

    def finalize(
        self,
        user_id: str,
        completed_at: Optional[datetime] = None,
        record_id: Optional[str] = None,
    ) -> AttemptRecord:
        """
        Score the session and move to results.

        Raises:
            IncompleteAnswersError: some question has no answer; state stays reviewing
        """
        self._require(QuizStatus.REVIEWING)

        unanswered = self.unanswered()
        if unanswered:
            raise IncompleteAnswersError(unanswered)

        completed_at = completed_at or utc_now()
        score = sum(1 for q in self.questions if self.answers[q.id] == q.correct_answer)
        total = len(self.questions)

        time_taken = None
        if self.started_at is not None:
            elapsed = max((completed_at - self.started_at).total_seconds(), 0)
            time_taken = round2(elapsed / 60)

        self.result = AttemptRecord(
            id=record_id or str(uuid.uuid4()),
            user_id=str(user_id),
            simulation_id=str(self.simulation_id),
            score=score,
            total_questions=total,
            percentage=round2(score / total * 100),
            completed_at=completed_at,
            time_taken_minutes=time_taken,
            answers=dict(self.answers),
        )
        self.status = QuizStatus.RESULTS
        return self.result

    def reset(self) -> None:
        """Discard everything and return to idle."""
        self.__init__()

    # ------------------------------------------------------------------
    # Serialization (FSM storage)
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "simulation_id": self.simulation_id,
            "title": self.title,
            "questions": [q.to_dict() for q in self.questions],
            "answers": dict(self.answers),
            "current_index": self.current_index,
            "started_at": format_timestamp(self.started_at),
            "result": self.result.to_dict() if self.result else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuizSession":
        session = cls()
        session.status = QuizStatus(data.get("status", QuizStatus.IDLE.value))
        session.simulation_id = data.get("simulation_id")
        session.title = data.get("title")
        session.questions = [QuizQuestion.from_dict(q) for q in data.get("questions", [])]
        session.answers = {str(k): v for k, v in (data.get("answers") or {}).items()}
        session.current_index = int(data.get("current_index", 0))
        session.started_at = parse_timestamp(data.get("started_at"))
        result = data.get("result")
        session.result = AttemptRecord.from_dict(result) if result else None
        return session
