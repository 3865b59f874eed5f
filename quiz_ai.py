# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import json
from dataclasses import dataclass, field

# Third-Party: Google & AI
from google.genai import errors as genai_errors


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_MODEL = "gemini-2.5-flash-lite"
MAX_CONTENT_CHARS = 8000
DEFAULT_TOPIC = "General Knowledge"
DEFAULT_DIFFICULTY = "intermediate"
CHOICE_KEYS = ("A", "B", "C", "D")
PERFORMANCE_LEVELS = ("Excellent", "Good", "Average", "Needs Improvement")
SUMMARY_SENTINEL = "Unable to generate summary."


# ============================================================================
# ERRORS
# ============================================================================

class QuizAIError(Exception):
    """Base error for the AI gateway. Carries the HTTP status the endpoint returns."""

    status = 500
    message = "AI request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class RateLimited(QuizAIError):
    status = 429
    message = "Rate limited. Please try again in a moment."


class QuotaExhausted(QuizAIError):
    status = 402
    message = "AI credits exhausted. Please add credits."


class GenerationFailed(QuizAIError):
    message = "AI generation failed"


class SummarizationFailed(QuizAIError):
    message = "Summarization failed"


class AnalysisFailed(QuizAIError):
    message = "Analysis failed"


# ============================================================================
# DATA MODEL
# ============================================================================

@dataclass(frozen=True)
class Question:
    question: str
    options: dict
    correct_answer: str
    explanation: str = ""

    @staticmethod
    def from_dict(d: dict) -> "Question":
        """Validate one generated question. Raises ValueError on anything malformed."""
        if not isinstance(d, dict):
            raise ValueError("question must be an object")
        text = str(d.get("question") or "").strip()
        if not text:
            raise ValueError("empty question text")
        raw_opts = d.get("options")
        if not isinstance(raw_opts, dict) or set(raw_opts.keys()) != set(CHOICE_KEYS):
            raise ValueError("options must have exactly the keys A, B, C, D")
        options = {k: str(raw_opts[k]).strip() for k in CHOICE_KEYS}
        if any(not v for v in options.values()):
            raise ValueError("empty option text")
        correct = str(d.get("correctAnswer") or "").strip().upper()
        if correct not in CHOICE_KEYS:
            raise ValueError(f"correctAnswer must be one of {CHOICE_KEYS}")
        return Question(
            question=text,
            options=options,
            correct_answer=correct,
            explanation=str(d.get("explanation") or "").strip(),
        )

    def to_dict(self) -> dict:
        return {
            "question": self.question,
            "options": dict(self.options),
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class Analysis:
    strengths: tuple = field(default_factory=tuple)
    weaknesses: tuple = field(default_factory=tuple)
    recommendations: tuple = field(default_factory=tuple)
    performance_level: str = "Average"

    @staticmethod
    def from_dict(d: dict) -> "Analysis":
        if not isinstance(d, dict):
            raise ValueError("analysis must be an object")

        def _strings(key: str) -> tuple:
            val = d.get(key)
            if not isinstance(val, list):
                raise ValueError(f"{key} must be a list")
            return tuple(str(v).strip() for v in val if str(v).strip())

        level = str(d.get("performanceLevel") or "").strip()
        # Accept the compact enum spelling as well.
        if level == "NeedsImprovement":
            level = "Needs Improvement"
        if level not in PERFORMANCE_LEVELS:
            raise ValueError(f"unknown performanceLevel: {level!r}")
        return Analysis(
            strengths=_strings("strengths"),
            weaknesses=_strings("weaknesses"),
            recommendations=_strings("recommendations"),
            performance_level=level,
        )

    def to_dict(self) -> dict:
        return {
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "recommendations": list(self.recommendations),
            "performanceLevel": self.performance_level,
        }


# ============================================================================
# PROMPTS & SCHEMAS
# ============================================================================

QUIZ_FUNCTION = {
    "name": "generate_quiz",
    "description": "Generate quiz questions with multiple choice answers",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "questions": {
                "type": "ARRAY",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "question": {"type": "STRING"},
                        "options": {
                            "type": "OBJECT",
                            "properties": {k: {"type": "STRING"} for k in CHOICE_KEYS},
                            "required": list(CHOICE_KEYS),
                        },
                        "correctAnswer": {"type": "STRING", "enum": list(CHOICE_KEYS)},
                        "explanation": {"type": "STRING"},
                    },
                    "required": ["question", "options", "correctAnswer", "explanation"],
                },
            },
        },
        "required": ["questions"],
    },
}

ANALYSIS_FUNCTION = {
    "name": "analyze_results",
    "description": "Analyze quiz results and provide insights",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "strengths": {"type": "ARRAY", "items": {"type": "STRING"}},
            "weaknesses": {"type": "ARRAY", "items": {"type": "STRING"}},
            "recommendations": {"type": "ARRAY", "items": {"type": "STRING"}},
            "performanceLevel": {"type": "STRING", "enum": list(PERFORMANCE_LEVELS)},
        },
        "required": ["strengths", "weaknesses", "recommendations", "performanceLevel"],
    },
}


def truncate_content(content: str | None) -> str:
    return (content or "")[:MAX_CONTENT_CHARS]


def build_quiz_prompts(topic: str | None, content: str | None, difficulty: str, count: int) -> tuple[str, str]:
    """Return (system, user) prompts for quiz generation. Content wins over topic."""
    system_prompt = (
        f"You are an expert quiz generator. Generate exactly {count} multiple choice questions. "
        "Each question must have exactly 4 options labeled A, B, C, D. "
        f"Adjust complexity based on difficulty level: {difficulty}.\n\n"
        "IMPORTANT: You MUST respond by calling the generate_quiz function with the questions array. "
        "Do not respond with plain text."
    )
    if content:
        user_prompt = (
            f"Generate a quiz based on this content:\n\n{truncate_content(content)}\n\n"
            f"Difficulty: {difficulty}"
        )
    else:
        user_prompt = f"Generate a quiz about: {topic or DEFAULT_TOPIC}\nDifficulty: {difficulty}"
    return system_prompt, user_prompt


def build_comparison(questions: list, answers: list) -> list[dict]:
    """Zip questions and answers into the rows sent for analysis.

    An unanswered slot (None) never matches a correct answer.
    """
    rows: list[dict] = []
    for i, q in enumerate(questions):
        if isinstance(q, Question):
            text, correct = q.question, q.correct_answer
        else:
            text = (q or {}).get("question")
            correct = (q or {}).get("correctAnswer")
        user_answer = answers[i] if i < len(answers) else None
        rows.append({
            "question": text,
            "correctAnswer": correct,
            "userAnswer": user_answer,
            "isCorrect": user_answer is not None and user_answer == correct,
        })
    return rows


# ============================================================================
# GATEWAY
# ============================================================================

class QuizAIGateway:
    """One-shot calls to Gemini for quiz generation, summaries and result analysis.

    Every structured action forces a function call so the reply is shaped to a
    fixed schema; the gateway only validates that payload and translates
    upstream error codes.
    """

    def __init__(self, client, model: str = DEFAULT_MODEL):
        self.client = client
        self.model = model

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    def _call(
        self,
        system_prompt: str,
        user_prompt: str,
        function: dict | None,
        failure: type,
        map_quota: bool = False,
    ):
        config: dict = {"system_instruction": system_prompt}
        if function is not None:
            config["tools"] = [{"function_declarations": [function]}]
            config["tool_config"] = {
                "function_calling_config": {
                    "mode": "ANY",
                    "allowed_function_names": [function["name"]],
                },
            }
        try:
            return self.client.models.generate_content(
                model=self.model,
                contents=user_prompt,
                config=config,
            )
        except genai_errors.APIError as e:
            print(f"[quiz-ai] upstream error {e.code}: {e.message}", flush=True)
            if map_quota and e.code == 429:
                raise RateLimited() from e
            if map_quota and e.code == 402:
                raise QuotaExhausted() from e
            raise failure() from e
        except Exception as e:
            print(f"[quiz-ai] request failed: {e}", flush=True)
            raise failure() from e

    @staticmethod
    def _function_args(resp, name: str, failure: type) -> dict:
        """Pull the arguments of the forced function call out of a response."""
        calls = getattr(resp, "function_calls", None) or []
        call = next((c for c in calls if getattr(c, "name", None) == name), None)
        if call is None:
            raise failure(f"No {name} call in response")
        args = getattr(call, "args", None)
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except json.JSONDecodeError as e:
                raise failure(f"Malformed {name} arguments") from e
        if not isinstance(args, dict):
            raise failure(f"Malformed {name} arguments")
        return args

    # ------------------------------------------------------------------
    # actions
    # ------------------------------------------------------------------
    def generate_quiz(
        self,
        topic: str | None = None,
        content: str | None = None,
        difficulty: str = DEFAULT_DIFFICULTY,
        num_questions: int = 5,
    ) -> list[Question]:
        count = int(num_questions)
        if count < 1:
            raise GenerationFailed("numQuestions must be at least 1")
        system_prompt, user_prompt = build_quiz_prompts(
            topic, content, difficulty or DEFAULT_DIFFICULTY, count
        )
        resp = self._call(
            system_prompt, user_prompt, QUIZ_FUNCTION, GenerationFailed, map_quota=True
        )
        args = self._function_args(resp, QUIZ_FUNCTION["name"], GenerationFailed)
        items = args.get("questions")
        if not isinstance(items, list):
            raise GenerationFailed("No questions generated")
        if len(items) < count:
            raise GenerationFailed(f"Expected {count} questions, got {len(items)}")
        try:
            return [Question.from_dict(q) for q in items[:count]]
        except ValueError as e:
            raise GenerationFailed(f"Malformed question: {e}") from e

    def summarize(self, content: str) -> str:
        system_prompt = (
            "You are a helpful assistant. Provide a clear, concise summary of the given content "
            "in 3-5 bullet points."
        )
        user_prompt = f"Summarize this content:\n\n{truncate_content(content)}"
        resp = self._call(system_prompt, user_prompt, None, SummarizationFailed)
        text = (getattr(resp, "text", None) or "").strip()
        return text or SUMMARY_SENTINEL

    def analyze_results(self, topic: str | None, questions: list, answers: list) -> Analysis:
        system_prompt = (
            "You are an educational analyst. Analyze quiz performance and provide insights. "
            "Respond by calling the analyze_results function."
        )
        user_prompt = (
            "Analyze these quiz results:\n"
            f"Topic: {topic or DEFAULT_TOPIC}\n"
            f"Questions and answers: {json.dumps(build_comparison(questions, answers), ensure_ascii=False)}"
        )
        resp = self._call(system_prompt, user_prompt, ANALYSIS_FUNCTION, AnalysisFailed)
        args = self._function_args(resp, ANALYSIS_FUNCTION["name"], AnalysisFailed)
        try:
            return Analysis.from_dict(args)
        except ValueError as e:
            raise AnalysisFailed(f"No analysis generated: {e}") from e
