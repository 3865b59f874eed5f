# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import functools
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

# Local
from quiz_ai import (
    DEFAULT_DIFFICULTY,
    DEFAULT_TOPIC,
    SUMMARY_SENTINEL,
    GenerationFailed,
    QuizAIError,
    SummarizationFailed,
)
from quiz_timer import QuestionTimer, ThreadingScheduler


# ============================================================================
# CONSTANTS
# ============================================================================

INPUT_METHODS = ("topic", "paste", "pdf")
DIFFICULTIES = ("beginner", "intermediate", "advanced")
MODES = ("learning", "test")
MAX_QUESTIONS = 50
MAX_SECONDS_PER_QUESTION = 3600


# ============================================================================
# ERRORS
# ============================================================================

class QuizSessionError(Exception):
    status = 400
    message = "Invalid request"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class InputInvalid(QuizSessionError):
    message = "Please enter a topic or some content first."


class InvalidAnswer(QuizSessionError):
    message = "Answer must be one of the question's options."


class TransitionNotAllowed(QuizSessionError):
    status = 409
    message = "That action is not available right now."


class FinishNotAllowed(TransitionNotAllowed):
    message = "Answer every question and reach the last one before finishing."


class QuizState(str, Enum):
    SETUP = "setup"
    LOADING = "loading"
    SUMMARY = "summary"
    ACTIVE = "active"
    RESULTS = "results"


# ============================================================================
# SETTINGS
# ============================================================================

def _as_int(value, name: str, lo: int, hi: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise InputInvalid(f"{name} must be a whole number")
    if not (lo <= n <= hi):
        raise InputInvalid(f"{name} must be between {lo} and {hi}")
    return n


def _as_choice(value, name: str, choices: tuple, default: str) -> str:
    v = (str(value).strip().lower() if value is not None else "") or default
    if v not in choices:
        raise InputInvalid(f"{name} must be one of: {', '.join(choices)}")
    return v


_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")


def _as_bool(value, name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise InputInvalid(f"{name} must be true or false")


@dataclass
class QuizSettings:
    input_method: str = "topic"
    topic: str = ""
    content: str = ""
    difficulty: str = DEFAULT_DIFFICULTY
    mode: str = "test"
    num_questions: int = 5
    timer_enabled: bool = True
    seconds_per_question: int = 30

    @staticmethod
    def from_dict(d: dict) -> "QuizSettings":
        """Parse the camelCase setup body sent by the client."""
        d = d or {}
        return QuizSettings(
            input_method=_as_choice(d.get("inputMethod"), "inputMethod", INPUT_METHODS, "topic"),
            topic=str(d.get("topic") or "").strip(),
            content=str(d.get("content") or ""),
            difficulty=_as_choice(d.get("difficulty"), "difficulty", DIFFICULTIES, DEFAULT_DIFFICULTY),
            mode=_as_choice(d.get("mode"), "mode", MODES, "test"),
            num_questions=_as_int(d.get("numQuestions", 5), "numQuestions", 1, MAX_QUESTIONS),
            timer_enabled=_as_bool(d.get("timerEnabled"), "timerEnabled", True),
            seconds_per_question=_as_int(
                d.get("timePerQuestion", 30), "timePerQuestion", 1, MAX_SECONDS_PER_QUESTION
            ),
        )

    def validate(self) -> None:
        if self.input_method == "topic":
            if not self.topic.strip():
                raise InputInvalid("Please enter a topic.")
        elif not self.content.strip():
            raise InputInvalid("Please paste or upload some content.")

    def quiz_content(self) -> str | None:
        """Raw content for paste/pdf input, None for a bare topic."""
        if self.input_method == "topic":
            return None
        return self.content

    def to_dict(self) -> dict:
        return {
            "inputMethod": self.input_method,
            "topic": self.topic,
            "difficulty": self.difficulty,
            "mode": self.mode,
            "numQuestions": self.num_questions,
            "timerEnabled": self.timer_enabled,
            "timePerQuestion": self.seconds_per_question,
        }


# ============================================================================
# SESSION
# ============================================================================

@dataclass
class Session:
    """One quiz attempt. `answers` has exactly one slot per question."""

    questions: tuple
    mode: str = "test"
    timer_enabled: bool = False
    seconds_per_question: int = 30
    started_at: float = 0.0
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    answers: list = None
    current_index: int = 0

    def __post_init__(self):
        self.questions = tuple(self.questions)
        if self.answers is None:
            self.answers = [None] * len(self.questions)
        if len(self.answers) != len(self.questions):
            raise ValueError("answers and questions must have the same length")

    @property
    def current_question(self):
        return self.questions[self.current_index]

    @property
    def is_last(self) -> bool:
        return self.current_index == len(self.questions) - 1

    def answered_count(self) -> int:
        return sum(1 for a in self.answers if a is not None)

    def all_answered(self) -> bool:
        return all(a is not None for a in self.answers)


@dataclass(frozen=True)
class AnswerFeedback:
    index: int
    selected: str
    correct_answer: str
    is_correct: bool
    explanation: str

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "selected": self.selected,
            "correctAnswer": self.correct_answer,
            "isCorrect": self.is_correct,
            "explanation": self.explanation,
        }


# ============================================================================
# STATE MACHINE
# ============================================================================

def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.lock:
            return method(self, *args, **kwargs)
    return wrapper


class QuizFlow:
    """setup -> loading -> (summary -> loading) -> active -> results.

    Observers registered with `subscribe` are called with the flow after every
    change. Transitions are serialized by `lock` because timer expiries arrive
    on scheduler threads.
    """

    def __init__(
        self,
        gateway,
        orchestrator,
        scheduler=None,
        user_id=None,
        clock=time.time,
        timer_clock=time.monotonic,
    ):
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.scheduler = scheduler or ThreadingScheduler()
        self.user_id = user_id
        self.clock = clock
        self.timer_clock = timer_clock
        self.lock = threading.RLock()

        self.state = QuizState.SETUP
        self.settings: QuizSettings | None = None
        self.session: Session | None = None
        self.summary: str | None = None
        self.results = None
        self.error: str | None = None
        self.error_status: int | None = None
        self.feedback: AnswerFeedback | None = None
        self._timer: QuestionTimer | None = None
        self._observers: list = []

    # ------------------------------------------------------------------
    # observers
    # ------------------------------------------------------------------
    def subscribe(self, callback) -> None:
        self._observers.append(callback)

    def _set_state(self, state: QuizState) -> None:
        self.state = state
        self._notify()

    def _notify(self) -> None:
        for cb in list(self._observers):
            cb(self)

    def _require(self, *states: QuizState) -> None:
        if self.state not in states:
            raise TransitionNotAllowed(
                f"Not allowed while the quiz is in '{self.state.value}' state."
            )

    # ------------------------------------------------------------------
    # setup / loading / summary
    # ------------------------------------------------------------------
    @_locked
    def start(self, settings: QuizSettings) -> None:
        self._require(QuizState.SETUP)
        settings.validate()
        self.settings = settings
        self.error = None
        self.error_status = None
        self._set_state(QuizState.LOADING)

        content = settings.quiz_content()
        if content:
            summary = self._try_summarize(content)
            if summary:
                self.summary = summary
                self._set_state(QuizState.SUMMARY)
                return
        self._generate(content)

    @_locked
    def continue_to_quiz(self) -> None:
        self._require(QuizState.SUMMARY)
        self._set_state(QuizState.LOADING)
        self._generate(self.settings.quiz_content())

    def _try_summarize(self, content: str) -> str | None:
        try:
            summary = self.gateway.summarize(content)
        except SummarizationFailed as e:
            print(f"[quiz] summary skipped: {e.message}", flush=True)
            return None
        if not summary or summary == SUMMARY_SENTINEL:
            return None
        return summary

    def _generate(self, content: str | None) -> None:
        s = self.settings
        try:
            questions = self.gateway.generate_quiz(
                topic=s.topic or DEFAULT_TOPIC,
                content=content,
                difficulty=s.difficulty,
                num_questions=s.num_questions,
            )
            if not questions:
                raise GenerationFailed("No questions generated")
        except QuizAIError as e:
            self.session = None
            self.summary = None
            self.error = e.message
            self.error_status = e.status
            self._set_state(QuizState.SETUP)
            return

        self.session = Session(
            questions=questions,
            mode=s.mode,
            timer_enabled=s.timer_enabled,
            seconds_per_question=s.seconds_per_question,
            started_at=self.clock(),
        )
        self.feedback = None
        if self.session.timer_enabled:
            self._timer = QuestionTimer(
                self.scheduler,
                self.session.seconds_per_question,
                self._on_timer_expired,
                clock=self.timer_clock,
            )
            self._timer.arm(self.session.session_id, 0)
        self._set_state(QuizState.ACTIVE)

    # ------------------------------------------------------------------
    # active
    # ------------------------------------------------------------------
    @_locked
    def select_answer(self, key: str) -> AnswerFeedback | None:
        self._require(QuizState.ACTIVE)
        session = self.session
        q = session.current_question
        key = str(key or "").strip().upper()
        if key not in q.options:
            raise InvalidAnswer()

        # learning mode locks the question once revealed
        if session.mode == "learning" and self.feedback is not None:
            return self.feedback

        session.answers[session.current_index] = key
        if session.mode == "learning":
            self.feedback = AnswerFeedback(
                index=session.current_index,
                selected=key,
                correct_answer=q.correct_answer,
                is_correct=key == q.correct_answer,
                explanation=q.explanation,
            )
        self._notify()
        return self.feedback

    @_locked
    def next(self) -> bool:
        self._require(QuizState.ACTIVE)
        if self.session.current_index >= len(self.session.questions) - 1:
            return False
        self.session.current_index += 1
        self._on_index_change()
        return True

    @_locked
    def prev(self) -> bool:
        self._require(QuizState.ACTIVE)
        if self.session.current_index <= 0:
            return False
        self.session.current_index -= 1
        self._on_index_change()
        return True

    def _on_index_change(self) -> None:
        self.feedback = None
        if self._timer is not None:
            self._timer.arm(self.session.session_id, self.session.current_index)
        self._notify()

    @_locked
    def can_finish(self) -> bool:
        return (
            self.state == QuizState.ACTIVE
            and self.session.is_last
            and self.session.all_answered()
        )

    @_locked
    def finish(self, force: bool = False):
        self._require(QuizState.ACTIVE)
        if not force and not self.can_finish():
            raise FinishNotAllowed()
        self._cancel_timer()
        s = self.settings
        self.results = self.orchestrator.finish(
            self.session,
            topic=s.topic or DEFAULT_TOPIC,
            difficulty=s.difficulty,
            user_id=self.user_id,
        )
        self._set_state(QuizState.RESULTS)
        return self.results

    def _on_timer_expired(self, key: tuple) -> None:
        with self.lock:
            if self.state != QuizState.ACTIVE or self.session is None:
                return
            if key != (self.session.session_id, self.session.current_index):
                return
            if self.session.is_last:
                self.finish(force=True)
            else:
                self.next()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None

    # ------------------------------------------------------------------
    # restart
    # ------------------------------------------------------------------
    @_locked
    def restart(self) -> None:
        self._cancel_timer()
        self.settings = None
        self.session = None
        self.summary = None
        self.results = None
        self.error = None
        self.error_status = None
        self.feedback = None
        self._set_state(QuizState.SETUP)

    # ------------------------------------------------------------------
    # view
    # ------------------------------------------------------------------
    @_locked
    def remaining_seconds(self) -> int | None:
        if self._timer is None:
            return None
        return self._timer.remaining()

    @_locked
    def view(self) -> dict:
        out: dict = {
            "state": self.state.value,
            "error": self.error,
            "summary": self.summary,
            "settings": self.settings.to_dict() if self.settings else None,
            "session": None,
            "results": self.results.to_dict() if self.results is not None else None,
        }
        session = self.session
        if session is not None and self.state == QuizState.ACTIVE:
            q = session.current_question
            question = {"question": q.question, "options": dict(q.options)}
            if self.feedback is not None:
                question["correctAnswer"] = q.correct_answer
                question["explanation"] = q.explanation
            out["session"] = {
                "sessionId": session.session_id,
                "mode": session.mode,
                "currentIndex": session.current_index,
                "total": len(session.questions),
                "answers": list(session.answers),
                "answeredCount": session.answered_count(),
                "isLast": session.is_last,
                "canFinish": self.can_finish(),
                "question": question,
                "feedback": self.feedback.to_dict() if self.feedback else None,
                "timerEnabled": session.timer_enabled,
                "secondsPerQuestion": session.seconds_per_question,
                "remainingSeconds": self.remaining_seconds(),
            }
        return out
