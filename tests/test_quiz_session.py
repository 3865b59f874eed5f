import unittest

from fakes import (
    FakeClock,
    ManualScheduler,
    MemoryHistory,
    analysis_reply,
    api_error,
    make_gateway,
    make_question,
    quiz_reply,
    text_reply,
)
from quiz_scoring import ScoringOrchestrator
from quiz_session import (
    FinishNotAllowed,
    InputInvalid,
    InvalidAnswer,
    QuizFlow,
    QuizSettings,
    QuizState,
    Session,
    TransitionNotAllowed,
)


def topic_settings(**overrides) -> QuizSettings:
    body = {
        "inputMethod": "topic",
        "topic": "Photosynthesis",
        "difficulty": "beginner",
        "mode": "test",
        "numQuestions": 5,
        "timerEnabled": False,
    }
    body.update(overrides)
    return QuizSettings.from_dict(body)


def questions(n: int = 5):
    return [make_question(i, "A") for i in range(n)]


class QuizFlowTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway, client = make_gateway()
        self.models = client.models
        self.history = MemoryHistory()
        self.scheduler = ManualScheduler()
        self.clock = FakeClock()
        orchestrator = ScoringOrchestrator(self.gateway, self.history, clock=self.clock)
        self.flow = QuizFlow(
            self.gateway,
            orchestrator,
            scheduler=self.scheduler,
            user_id="u1",
            clock=self.clock,
            timer_clock=self.clock,
        )

    def start_with(self, n: int = 5, **overrides) -> None:
        self.models.replies["generate_quiz"] = quiz_reply(questions(n))
        self.flow.start(topic_settings(numQuestions=n, **overrides))


class SettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        s = QuizSettings.from_dict({"topic": "Rivers"})
        self.assertEqual(
            (s.difficulty, s.mode, s.num_questions, s.timer_enabled, s.seconds_per_question),
            ("intermediate", "test", 5, True, 30),
        )

    def test_out_of_range_values(self) -> None:
        for body in ({"topic": "x", "numQuestions": 0}, {"topic": "x", "difficulty": "expert"}):
            with self.subTest(body=body):
                with self.assertRaises(InputInvalid):
                    QuizSettings.from_dict(body)

    def test_timer_enabled_parses_strings(self) -> None:
        for raw, expected in [("false", False), ("0", False), ("true", True), (False, False), (None, True)]:
            with self.subTest(raw=raw):
                body = {"topic": "x"}
                if raw is not None:
                    body["timerEnabled"] = raw
                self.assertIs(QuizSettings.from_dict(body).timer_enabled, expected)
        with self.assertRaises(InputInvalid):
            QuizSettings.from_dict({"topic": "x", "timerEnabled": "maybe"})

    def test_session_answers_must_match_questions(self) -> None:
        with self.assertRaises(ValueError):
            Session(questions=(object(), object()), answers=[None])


class StartTests(QuizFlowTestCase):
    def test_topic_quiz_goes_straight_to_active(self) -> None:
        self.start_with(5)

        self.assertEqual(self.flow.state, QuizState.ACTIVE)
        self.assertEqual(len(self.flow.session.questions), 5)
        self.assertEqual(self.flow.session.answers, [None] * 5)
        self.assertEqual(self.flow.session.current_index, 0)
        self.assertTrue(all("tools" in c["config"] for c in self.models.calls))

    def test_blank_topic_is_rejected_without_calling_ai(self) -> None:
        with self.assertRaises(InputInvalid):
            self.flow.start(topic_settings(topic="   "))
        self.assertEqual(self.flow.state, QuizState.SETUP)
        self.assertEqual(self.models.calls, [])

    def test_pasted_content_shows_summary_first(self) -> None:
        self.models.replies["text"] = text_reply("- plants make sugar")
        self.models.replies["generate_quiz"] = quiz_reply(questions())
        self.flow.start(topic_settings(inputMethod="paste", topic="", content="Plants use light."))

        self.assertEqual(self.flow.state, QuizState.SUMMARY)
        self.assertEqual(self.flow.summary, "- plants make sugar")

        self.flow.continue_to_quiz()
        self.assertEqual(self.flow.state, QuizState.ACTIVE)
        self.assertIn("Plants use light.", self.models.calls[-1]["contents"])

    def test_failed_summary_skips_to_generation(self) -> None:
        self.models.replies["text"] = api_error(500)
        self.models.replies["generate_quiz"] = quiz_reply(questions())
        self.flow.start(topic_settings(inputMethod="paste", content="Plants use light."))

        self.assertEqual(self.flow.state, QuizState.ACTIVE)
        self.assertIsNone(self.flow.summary)

    def test_rate_limit_returns_to_setup_with_message(self) -> None:
        self.models.replies["generate_quiz"] = api_error(429)
        self.flow.start(topic_settings())

        self.assertEqual(self.flow.state, QuizState.SETUP)
        self.assertIsNone(self.flow.session)
        self.assertEqual(self.flow.error_status, 429)
        self.assertIn("Rate limited", self.flow.error)

    def test_observers_see_transitions(self) -> None:
        seen = []
        self.flow.subscribe(lambda f: seen.append(f.state))
        self.start_with(5)
        self.assertEqual(seen[:2], [QuizState.LOADING, QuizState.ACTIVE])

    def test_actions_outside_their_state_are_rejected(self) -> None:
        with self.assertRaises(TransitionNotAllowed):
            self.flow.select_answer("A")
        with self.assertRaises(TransitionNotAllowed):
            self.flow.continue_to_quiz()


class AnsweringTests(QuizFlowTestCase):
    def test_test_mode_scores_three_of_five(self) -> None:
        self.models.replies["analyze_results"] = analysis_reply("Average")
        self.start_with(5)

        for key in ["A", "A", "A", "B", "C"]:
            self.assertIsNone(self.flow.select_answer(key))
            self.flow.next()

        results = self.flow.finish()
        self.assertEqual(self.flow.state, QuizState.RESULTS)
        self.assertEqual((results.score, results.total, results.accuracy), (3, 5, 60))
        self.assertEqual(results.performance_level, "Average")
        self.assertEqual(results.analysis.performance_level, "Average")
        self.assertTrue(results.saved)
        [(uid, record)] = self.history.rows
        self.assertEqual(uid, "u1")
        self.assertEqual((record.topic, record.difficulty), ("Photosynthesis", "beginner"))
        self.assertEqual(record.results["userAnswers"], ["A", "A", "A", "B", "C"])

    def test_analysis_failure_still_produces_results(self) -> None:
        self.models.replies["analyze_results"] = api_error(500)
        self.start_with(5)
        for _ in range(5):
            self.flow.select_answer("A")
            self.flow.next()

        results = self.flow.finish()
        self.assertEqual(results.score, 5)
        self.assertIsNone(results.analysis)
        self.assertEqual(len(self.history.rows), 1)

    def test_answer_can_change_in_test_mode(self) -> None:
        self.start_with(5)
        self.flow.select_answer("B")
        self.flow.select_answer("A")
        self.flow.select_answer("A")
        self.assertEqual(self.flow.session.answers[0], "A")

    def test_invalid_answer_key(self) -> None:
        self.start_with(5)
        with self.assertRaises(InvalidAnswer):
            self.flow.select_answer("E")

    def test_learning_mode_locks_after_reveal(self) -> None:
        self.start_with(5, mode="learning")

        feedback = self.flow.select_answer("B")
        self.assertFalse(feedback.is_correct)
        self.assertEqual(feedback.correct_answer, "A")
        self.assertEqual(self.flow.view()["session"]["question"]["correctAnswer"], "A")

        self.assertIs(self.flow.select_answer("A"), feedback)
        self.assertEqual(self.flow.session.answers[0], "B")

        self.flow.next()
        self.assertIsNone(self.flow.feedback)
        self.assertNotIn("correctAnswer", self.flow.view()["session"]["question"])

    def test_finish_requires_last_question_and_all_answered(self) -> None:
        self.start_with(5)
        with self.assertRaises(FinishNotAllowed):
            self.flow.finish()

        for _ in range(4):
            self.flow.next()
        self.assertTrue(self.flow.session.is_last)
        with self.assertRaises(FinishNotAllowed):
            self.flow.finish()
        self.assertEqual(self.flow.state, QuizState.ACTIVE)

    def test_navigation_stays_in_bounds(self) -> None:
        self.start_with(5)
        self.assertFalse(self.flow.prev())
        for _ in range(4):
            self.assertTrue(self.flow.next())
        self.assertFalse(self.flow.next())
        self.assertEqual(self.flow.session.current_index, 4)

    def test_restart_clears_everything(self) -> None:
        self.start_with(5)
        self.flow.restart()

        self.assertEqual(self.flow.state, QuizState.SETUP)
        self.assertIsNone(self.flow.session)
        self.assertIsNone(self.flow.view()["settings"])


class TimerTests(QuizFlowTestCase):
    def test_expiry_advances_then_finishes(self) -> None:
        self.models.replies["analyze_results"] = analysis_reply()
        self.start_with(2, timerEnabled=True, timePerQuestion=15)

        self.assertEqual(self.flow.remaining_seconds(), 15)
        self.scheduler.fire_latest()
        self.assertEqual(self.flow.session.current_index, 1)

        self.scheduler.fire_latest()
        self.assertEqual(self.flow.state, QuizState.RESULTS)
        self.assertEqual(self.flow.results.score, 0)

    def test_manual_next_resets_countdown(self) -> None:
        self.start_with(5, timerEnabled=True, timePerQuestion=20)
        self.clock.advance(15)
        self.assertEqual(self.flow.remaining_seconds(), 5)

        stale = self.scheduler.live()[-1]
        self.flow.next()
        self.assertTrue(stale.cancelled)
        self.assertEqual(self.flow.remaining_seconds(), 20)

        stale.fire()
        self.assertEqual(self.flow.session.current_index, 1)

    def test_stale_expiry_after_next_keeps_new_countdown(self) -> None:
        self.start_with(5, timerEnabled=True, timePerQuestion=20)
        first = self.scheduler.live()[-1]
        self.flow.next()
        first.fire()

        self.assertEqual(self.flow.session.current_index, 1)
        self.assertEqual(self.flow.remaining_seconds(), 20)
        self.scheduler.fire_latest()
        self.assertEqual(self.flow.session.current_index, 2)
        self.assertEqual(self.flow.remaining_seconds(), 20)

    def test_finish_cancels_pending_timer(self) -> None:
        self.models.replies["analyze_results"] = analysis_reply()
        self.start_with(1, timerEnabled=True)
        handle = self.scheduler.live()[-1]
        self.flow.select_answer("A")
        self.flow.finish()

        self.assertTrue(handle.cancelled)
        handle.fire()
        self.assertEqual(self.flow.state, QuizState.RESULTS)


if __name__ == "__main__":
    unittest.main()
