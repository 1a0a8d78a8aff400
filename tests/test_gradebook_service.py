import unittest

from reportcards.core.workflow import WorkflowStatus
from reportcards.engine import ReportCardEngine
from reportcards.services.gradebook_service import GradebookError, ScoresLockedError
from reportcards.services.persistence import InMemoryPersistence, PersistenceError

STUDENTS = [("s1", "Ada"), ("s2", "Bola")]


class BrokenMarksStore(InMemoryPersistence):
    def _write_student_marks_record(self, record):
        raise PersistenceError("disk full")


class FlakyMarksStore(InMemoryPersistence):
    def __init__(self):
        super().__init__()
        self.writes = 0

    def _write_student_marks_record(self, record):
        self.writes += 1
        if self.writes == 2:
            raise PersistenceError("connection dropped")
        super()._write_student_marks_record(record)


class GradebookServiceTests(unittest.TestCase):
    def setUp(self):
        self.engine = ReportCardEngine(store=InMemoryPersistence())
        self.gradebook = self.engine.gradebook
        self.session = self.engine.open_session("t1", "Mrs Obi", "JSS1", "Mathematics", "first", "2024/2025")
        self.gradebook.load_cohort(self.session, STUDENTS)

    def enter(self, student_id, first, second, assignment, exam):
        for field, value in zip(("first_test", "second_test", "assignment", "exam"), (first, second, assignment, exam)):
            self.gradebook.update_score(self.session, student_id, field, value)

    def test_totals_through_score_entry(self):
        self.enter("s1", 19, 18, 19, 36)
        result = self.session.find("s1").result
        self.assertEqual(result.continuous_total, 56)
        self.assertEqual(result.grand_total, 92)
        self.assertEqual(result.average_percent, 92)
        self.assertEqual(result.grade, "A")
        self.assertEqual(result.position, 1)
        self.assertTrue(self.session.dirty)

    def test_scores_are_clamped_on_entry(self):
        self.gradebook.update_score(self.session, "s1", "exam", "55")
        self.gradebook.update_score(self.session, "s1", "first_test", "-4")
        scores = self.session.find("s1").scores
        self.assertEqual((scores.exam, scores.first_test), (40, 0))

    def test_positions_follow_each_edit(self):
        self.enter("s1", 10, 10, 10, 10)
        self.enter("s2", 15, 15, 15, 15)
        self.assertEqual([a.position for a in self.session.cohort], [2, 1])
        self.gradebook.update_score(self.session, "s1", "exam", 40)
        self.assertEqual([a.position for a in self.session.cohort], [1, 2])

    def test_unknown_field_and_student(self):
        with self.assertRaises(GradebookError):
            self.gradebook.update_score(self.session, "s1", "homework", 5)
        with self.assertRaises(GradebookError):
            self.gradebook.update_score(self.session, "nobody", "exam", 5)

    def test_update_obtainable_and_remark(self):
        self.enter("s1", 10, 10, 0, 25)
        self.gradebook.update_obtainable(self.session, "s1", 50)
        result = self.session.find("s1").result
        self.assertEqual(result.average_percent, 90)
        self.assertEqual(result.grade, "A")

        self.gradebook.update_obtainable(self.session, "s1", "")
        self.assertEqual(self.session.find("s1").obtainable_total, 100)

        self.gradebook.update_remark(self.session, "s1", "  Keep it up ")
        self.assertEqual(self.session.find("s1").teacher_remark, "Keep it up")

    def test_save_and_reload(self):
        self.enter("s1", 19, 18, 19, 36)
        self.enter("s2", 14, 14, 14, 28)
        saved = self.gradebook.save_cohort(self.session)
        self.assertFalse(self.session.dirty)
        self.assertEqual([r.overall_position for r in saved], [1, 2])
        self.assertTrue(all(r.number_in_class == 2 for r in saved))
        self.assertEqual(saved[0].overall_average, 92)

        reopened = self.engine.open_session("t1", "Mrs Obi", "JSS1", "Mathematics", "First Term", "2024/2025")
        cohort = self.gradebook.load_cohort(reopened, STUDENTS)
        self.assertEqual(cohort[0].scores.exam, 36)
        self.assertEqual(cohort[0].student_name, "Ada")
        self.assertEqual(cohort[1].result.grand_total, 70)

    def test_overall_average_spans_subjects(self):
        self.enter("s1", 20, 20, 20, 40)
        self.gradebook.save_cohort(self.session)

        english = self.engine.open_session("t2", "Mr Eze", "JSS1", "English", "first", "2024/2025")
        self.gradebook.load_cohort(english, [("s1", "Ada")])
        self.gradebook.update_score(english, "s1", "exam", 30)
        saved = self.gradebook.save_cohort(english)
        self.assertEqual(set(saved[0].subjects), {"Mathematics", "English"})
        self.assertEqual(saved[0].overall_average, 65)

    def test_submission_locks_and_cancel_unlocks(self):
        self.enter("s1", 10, 10, 10, 10)
        self.gradebook.save_cohort(self.session)
        self.gradebook.submit_for_approval(self.session)
        self.assertEqual(self.engine.workflow.status(self.session.key), WorkflowStatus.PENDING)

        with self.assertRaises(ScoresLockedError):
            self.gradebook.update_score(self.session, "s1", "exam", 30)

        self.engine.workflow.cancel_submission(self.session.key)
        self.gradebook.update_score(self.session, "s1", "exam", 30)
        self.assertEqual(self.session.find("s1").scores.exam, 30)

    def test_approved_results_stay_locked(self):
        self.gradebook.submit_for_approval(self.session)
        self.engine.workflow.approve(self.session.key)
        with self.assertRaises(ScoresLockedError):
            self.gradebook.update_remark(self.session, "s2", "late")

    def test_revoked_results_are_editable(self):
        self.gradebook.submit_for_approval(self.session)
        self.engine.workflow.revoke(self.session.key, "Recheck exam")
        self.gradebook.update_score(self.session, "s2", "exam", 20)
        self.assertEqual(self.session.find("s2").scores.exam, 20)

    def test_missing_selection(self):
        session = self.engine.open_session("t1", "Mrs Obi", "", "Mathematics", "first", "")
        with self.assertRaises(GradebookError) as ctx:
            self.gradebook.load_cohort(session, STUDENTS)
        self.assertIn("class", str(ctx.exception))

    def test_save_requires_students(self):
        session = self.engine.open_session("t1", "Mrs Obi", "JSS2", "Mathematics", "first", "2024/2025")
        with self.assertRaises(GradebookError):
            self.gradebook.save_cohort(session)

    def test_persistence_failure_keeps_unsaved_edits(self):
        engine = ReportCardEngine(store=BrokenMarksStore())
        session = engine.open_session("t1", "Mrs Obi", "JSS1", "Mathematics", "first", "2024/2025")
        engine.gradebook.load_cohort(session, STUDENTS)
        engine.gradebook.update_score(session, "s1", "exam", 33)

        with self.assertRaises(PersistenceError):
            engine.gradebook.save_cohort(session)
        self.assertTrue(session.dirty)
        self.assertEqual(session.find("s1").scores.exam, 33)

    def test_failed_save_commits_no_student(self):
        store = FlakyMarksStore()
        engine = ReportCardEngine(store=store)
        session = engine.open_session("t1", "Mrs Obi", "JSS1", "Mathematics", "first", "2024/2025")
        engine.gradebook.load_cohort(session, STUDENTS)
        engine.gradebook.update_score(session, "s1", "exam", 33)
        engine.gradebook.update_score(session, "s2", "exam", 21)

        with self.assertRaises(PersistenceError):
            engine.gradebook.save_cohort(session)
        self.assertEqual(store.list_student_marks_records("2024/2025"), [])
        self.assertTrue(session.dirty)

        engine.gradebook.save_cohort(session)
        self.assertEqual(len(store.list_student_marks_records("2024/2025")), 2)
        self.assertFalse(session.dirty)

    def test_class_distribution(self):
        self.enter("s1", 20, 20, 20, 35)
        self.enter("s2", 5, 5, 5, 20)
        summary = self.gradebook.class_distribution(self.session)
        self.assertEqual(summary.counts["A"], 1)
        self.assertEqual(summary.counts["F"], 1)
        self.assertEqual(summary.pass_rate, 50)


if __name__ == "__main__":
    unittest.main()
