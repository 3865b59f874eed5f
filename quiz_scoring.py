# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import math
import time
from dataclasses import dataclass, field
from datetime import datetime

# Local
from quiz_ai import DEFAULT_TOPIC, AnalysisFailed
from quiz_history import HistoryRecord, PersistenceFailed


# ============================================================================
# SCORING HELPERS
# ============================================================================

def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def compute_score(questions, answers) -> int:
    """Count slots whose answer equals the correct key. Unanswered never counts."""
    return sum(
        1
        for i, q in enumerate(questions)
        if i < len(answers) and answers[i] is not None and answers[i] == q.correct_answer
    )


def compute_accuracy(score: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(100 * score / total)


def performance_label(accuracy: int) -> str:
    if accuracy >= 90:
        return "Excellent"
    if accuracy >= 70:
        return "Good"
    if accuracy >= 50:
        return "Average"
    return "Needs Improvement"


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class QuizResults:
    score: int
    total: int
    accuracy: int
    time_taken: int
    performance_level: str
    details: list = field(default_factory=list)
    analysis: object = None
    saved: bool = False
    history_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "total": self.total,
            "accuracy": self.accuracy,
            "timeTaken": self.time_taken,
            "performanceLevel": self.performance_level,
            "details": list(self.details),
            "analysis": self.analysis.to_dict() if self.analysis is not None else None,
            "saved": self.saved,
            "historyId": self.history_id,
        }


class ScoringOrchestrator:
    """Scores a finished session, writes history, and attaches an AI analysis.

    Neither a history write failure nor an analysis failure stops the results
    from being returned.
    """

    def __init__(self, gateway, history=None, clock=time.time):
        self.gateway = gateway
        self.history = history
        self.clock = clock

    def finish(self, session, topic: str | None, difficulty: str, user_id=None) -> QuizResults:
        questions = session.questions
        answers = list(session.answers)
        total = len(questions)
        score = compute_score(questions, answers)
        accuracy = compute_accuracy(score, total)
        time_taken = max(0, round_half_up(self.clock() - session.started_at))
        topic = topic or DEFAULT_TOPIC

        details = [
            {
                "index": i,
                "question": q.question,
                "options": dict(q.options),
                "userAnswer": answers[i],
                "correctAnswer": q.correct_answer,
                "isCorrect": answers[i] is not None and answers[i] == q.correct_answer,
                "explanation": q.explanation,
            }
            for i, q in enumerate(questions)
        ]
        results = QuizResults(
            score=score,
            total=total,
            accuracy=accuracy,
            time_taken=time_taken,
            performance_level=performance_label(accuracy),
            details=details,
        )

        if self.history is not None and user_id:
            record = HistoryRecord(
                topic=topic,
                difficulty=difficulty,
                mode=session.mode,
                score=score,
                total_questions=total,
                time_taken=time_taken,
                questions=[q.to_dict() for q in questions],
                results={"userAnswers": answers, "score": score, "timeTaken": time_taken},
            )
            try:
                saved = self.history.append(user_id, record)
                results.saved = True
                results.history_id = saved.get("id")
            except PersistenceFailed as e:
                print(f"[history] Failed to save quiz: {e.message}", flush=True)

        try:
            results.analysis = self.gateway.analyze_results(topic, list(questions), answers)
        except AnalysisFailed as e:
            print(f"[quiz-ai] Analysis failed: {e.message}", flush=True)

        return results


# ============================================================================
# CERTIFICATE & HISTORY SUMMARY
# ============================================================================

CERT_WIDTH = 46


def _cert_line(text: str = "") -> str:
    return "║  " + text[: CERT_WIDTH - 2].ljust(CERT_WIDTH - 2) + "║"


def render_certificate(
    results: QuizResults,
    user_name: str,
    topic: str | None,
    difficulty: str,
    when: datetime,
) -> str:
    """Plain-text completion certificate for a finished quiz."""
    border = "═" * CERT_WIDTH
    lines = [
        "╔" + border + "╗",
        _cert_line(),
        _cert_line("       CERTIFICATE OF COMPLETION"),
        _cert_line(),
        _cert_line("This certifies that"),
        _cert_line(),
        _cert_line(user_name or "Participant"),
        _cert_line(),
        _cert_line("has successfully completed the quiz on"),
        _cert_line(),
        _cert_line(f"Topic: {topic or DEFAULT_TOPIC}"),
        _cert_line(f"Score: {results.score}/{results.total} ({results.accuracy}%)"),
        _cert_line(f"Level: {difficulty}"),
        _cert_line(f"Date:  {when.strftime('%Y-%m-%d')}"),
        _cert_line(),
        _cert_line(f"Performance: {results.performance_level}"),
        _cert_line(),
        _cert_line("            QuizMind AI"),
        "╚" + border + "╝",
    ]
    return "\n".join(lines)


def summarize_history(rows: list[dict]) -> dict:
    """Aggregate stats for the history page. `rows` are newest-first."""
    if not rows:
        return {"count": 0, "averageAccuracy": 0, "latestAccuracy": 0, "totalTime": 0}

    def _acc(r: dict) -> float:
        total = r.get("total_questions") or 0
        return (100 * (r.get("score") or 0) / total) if total else 0.0

    return {
        "count": len(rows),
        "averageAccuracy": round_half_up(sum(_acc(r) for r in rows) / len(rows)),
        "latestAccuracy": round_half_up(_acc(rows[0])),
        "totalTime": sum(int(r.get("time_taken") or 0) for r in rows),
    }
