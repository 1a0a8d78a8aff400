import unittest
from datetime import datetime, timezone

from reportcards.core.records import AssessmentResult, StudentMarksRecord, SubjectAssessment
from reportcards.core.scores import ComponentScores
from reportcards.core.workflow import WorkflowRecord, WorkflowStatus
from reportcards.services.documents import (
    dump_marks_record,
    dump_workflow_record,
    load_marks_record,
    load_workflow_record,
)


class MarksDocumentTests(unittest.TestCase):
    def test_legacy_document_is_coerced(self):
        record = load_marks_record(
            {
                "studentId": 17,
                "studentName": "Ada",
                "className": "JSS1",
                "term": "second",
                "session": "2024/2025",
                "overallPosition": "3rd",
                "lastUpdated": "2025-01-10T08:00:00Z",
                "subjects": {
                    "Mathematics": {
                        "ca1": "18",
                        "ca2": 15.5,
                        "noteAssignment": None,
                        "exam": "35",
                        "totalObtainable": "0",
                        "averageScore": "69",
                        "position": "2nd",
                        "grade": "C",
                    }
                },
            }
        )
        self.assertEqual(record.student_id, "17")
        self.assertEqual(record.term, "Second Term")
        self.assertEqual(record.overall_position, 3)
        self.assertEqual(record.last_updated, datetime(2025, 1, 10, 8, tzinfo=timezone.utc))

        maths = record.subjects["Mathematics"]
        self.assertEqual(maths.scores, ComponentScores(18, 16, 0, 35))
        self.assertEqual(maths.class_id, "JSS1")
        self.assertEqual(maths.obtainable_total, 100)
        self.assertEqual(maths.result.grand_total, 69)
        self.assertEqual(maths.result.position, 2)
        self.assertEqual(maths.result.average_percent, 69)

    def test_legacy_exam_keys(self):
        for name in ("examScore", "exam_score"):
            record = load_marks_record(
                {"student_id": "s1", "term": "First Term", "session": "2024/2025", "subjects": {"English": {name: "42"}}}
            )
            self.assertEqual(record.subjects["English"].scores.exam, 42)

    def test_malformed_document_is_skipped(self):
        with self.assertLogs("reportcards.services.documents", level="WARNING"):
            self.assertIsNone(load_marks_record({"term": "First Term", "session": "2024/2025"}))
        with self.assertLogs("reportcards.services.documents", level="WARNING"):
            self.assertIsNone(load_marks_record("not a document"))

    def test_dump_uses_iso_timestamps(self):
        assessment = SubjectAssessment(
            student_id="s1",
            class_id="JSS1",
            subject="English",
            term="First Term",
            session="2024/2025",
            scores=ComponentScores(10, 10, 10, 30),
            result=AssessmentResult(30, 60, 100, 60, 60, "D", "Fair", 4),
        )
        record = StudentMarksRecord(
            "s1", "First Term", "2024/2025", class_id="JSS1", last_updated=datetime(2025, 2, 1, 12, 0)
        ).with_subject(assessment)
        payload = dump_marks_record(record)
        self.assertEqual(payload["last_updated"], "2025-02-01T12:00:00+00:00")
        self.assertEqual(payload["subjects"]["English"]["exam"], 30)
        self.assertEqual(payload["subjects"]["English"]["position"], 4)

        loaded = load_marks_record(payload)
        self.assertEqual(loaded.subjects["English"].result, assessment.result)


class WorkflowDocumentTests(unittest.TestCase):
    def test_unknown_status_reads_as_draft(self):
        record = load_workflow_record(
            {
                "id": "s1::jss1::maths::first_term::2024/2025::t1",
                "studentId": "s1",
                "className": "JSS1",
                "subject": "Maths",
                "term": "first term",
                "session": "2024/2025",
                "teacherId": "t1",
                "status": "Archived",
                "updatedAt": "not a date",
            }
        )
        self.assertEqual(record.status, WorkflowStatus.DRAFT)
        self.assertEqual(record.term, "First Term")
        self.assertIsNotNone(record.updated_at)

    def test_status_is_case_insensitive(self):
        record = load_workflow_record(
            {"id": "x", "student_id": "s1", "class_id": "JSS1", "subject": "Maths", "term": "", "session": "2024/2025", "status": "APPROVED"}
        )
        self.assertEqual(record.status, WorkflowStatus.APPROVED)

    def test_dump_and_load(self):
        when = datetime(2025, 3, 4, 10, tzinfo=timezone.utc)
        record = WorkflowRecord(
            id="s1::jss1::maths::first_term::2024/2025::t1",
            student_id="s1",
            class_id="JSS1",
            subject="Maths",
            term="First Term",
            session="2024/2025",
            teacher_id="t1",
            status=WorkflowStatus.REVOKED,
            updated_at=when,
            submitted_at=when,
            feedback="Recheck",
        )
        payload = dump_workflow_record(record)
        self.assertEqual(payload["status"], "revoked")
        self.assertEqual(payload["published_at"], None)
        self.assertEqual(load_workflow_record(payload), record)

    def test_every_status_survives_storage(self):
        for status in WorkflowStatus:
            record = WorkflowRecord(
                id="s1::jss1::maths::first_term::2024/2025::t1",
                student_id="s1",
                class_id="JSS1",
                subject="Maths",
                term="First Term",
                session="2024/2025",
                teacher_id="t1",
                status=status,
                updated_at=datetime(2025, 3, 4, tzinfo=timezone.utc),
            )
            payload = dump_workflow_record(record)
            self.assertEqual(payload["status"], status.value)
            reloaded = load_workflow_record(payload)
            self.assertIs(reloaded.status, status)

    def test_missing_id_is_skipped(self):
        with self.assertLogs("reportcards.services.documents", level="WARNING"):
            self.assertIsNone(load_workflow_record({"student_id": "s1", "session": "2024/2025"}))


if __name__ == "__main__":
    unittest.main()
