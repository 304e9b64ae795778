"""
Unit tests for attempt results.
"""
import unittest

from cbt.errors import RecordNotFound
from cbt.results import format_duration, get_result, percentage
from tests.test_fixtures import SeededStore, TestFixtures


class TestFormatting(unittest.TestCase):

    def test_percentage(self):
        self.assertAlmostEqual(percentage(2, 3), 66.666, places=2)
        self.assertEqual(percentage(5, 5), 100.0)

    def test_percentage_without_points_is_zero(self):
        self.assertEqual(percentage(0, 0), 0.0)
        self.assertEqual(percentage(None, None), 0.0)

    def test_format_duration(self):
        self.assertEqual(format_duration(0), "0:00")
        self.assertEqual(format_duration(65), "1:05")
        self.assertEqual(format_duration(600), "10:00")
        self.assertEqual(format_duration(None), "0:00")


class TestGetResult(unittest.IsolatedAsyncioTestCase):
    """Test cases for loading a submitted attempt."""

    async def asyncSetUp(self):
        self.data_manager = TestFixtures.create_data_manager()
        self.store = await SeededStore(self.data_manager).seed()
        self.controller = TestFixtures.create_controller(self.data_manager)

    async def asyncTearDown(self):
        await self.controller.shutdown()
        self.data_manager.dispose()

    async def start_attempt(self):
        session = await self.controller.load_quiz(self.store.student, self.store.quiz_id)
        return session, {q.question_text: q.id for q in session.questions}

    async def submitted_attempt(self):
        session, ids = await self.start_attempt()
        self.controller.record_answer(self.store.student, session.attempt_id, ids["What is 2+2?"], "4")
        self.controller.record_answer(self.store.student, session.attempt_id, ids["The sky is blue."], "True")
        self.controller.record_answer(self.store.student, session.attempt_id, ids["Capital of France?"], "Rome")
        await self.controller.submit(self.store.student, session.attempt_id)
        return session.attempt_id

    async def test_two_of_three(self):
        attempt_id = await self.submitted_attempt()

        result = await get_result(self.store.student, self.data_manager, attempt_id)

        self.assertEqual((result.score, result.total_points), (2, 3))
        self.assertEqual(result.percentage, 66.7)
        self.assertEqual(result.correct_count, 2)
        self.assertEqual(result.quiz_title, "General Knowledge")
        self.assertIsNotNone(result.submitted_at)
        self.assertRegex(result.time_taken, r"^\d+:\d\d$")

    async def test_answers_in_served_order_with_questions(self):
        attempt_id = await self.submitted_attempt()

        result = await get_result(self.store.student, self.data_manager, attempt_id)

        self.assertEqual([a.question_text for a in result.answers],
                         ["What is 2+2?", "The sky is blue.", "Capital of France?"])
        self.assertEqual([a.is_correct for a in result.answers], [True, True, False])
        self.assertEqual(result.answers[2].student_answer, "Rome")
        self.assertEqual(result.answers[2].correct_answer, "Paris")
        self.assertEqual(result.answers[0].options, ["3", "4", "5", "6"])

    async def test_quiz_owner_can_view(self):
        attempt_id = await self.submitted_attempt()
        result = await get_result(self.store.admin, self.data_manager, attempt_id)
        self.assertEqual(result.score, 2)

    async def test_other_student_cannot_view(self):
        attempt_id = await self.submitted_attempt()
        with self.assertRaises(RecordNotFound):
            await get_result(self.store.other_student, self.data_manager, attempt_id)

    async def test_unsubmitted_attempt_has_no_result(self):
        session, _ = await self.start_attempt()

        with self.assertRaises(RecordNotFound) as ctx:
            await get_result(self.store.student, self.data_manager, session.attempt_id)
        self.assertEqual(ctx.exception.user_message, "Results not found")

    async def test_missing_attempt(self):
        with self.assertRaises(RecordNotFound):
            await get_result(self.store.student, self.data_manager, "no-such-attempt")


if __name__ == '__main__':
    unittest.main()
