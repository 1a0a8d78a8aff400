import json
import sqlite3
from pathlib import Path
from typing import List, Optional

from reportcards.core.records import StudentMarksRecord, normalize_term_label
from reportcards.core.workflow import WorkflowRecord
from reportcards.services.documents import (
    dump_marks_record,
    dump_workflow_record,
    load_marks_record,
    load_workflow_record,
)
from reportcards.services.persistence import PersistenceAdapter, PersistenceError


class SqlitePersistence(PersistenceAdapter):
    def __init__(self, db_path: str = "reportcards.db") -> None:
        super().__init__()
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self._init_schema()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not open marks database at {db_path}: {exc}") from exc

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS student_marks (
              student_id TEXT NOT NULL,
              term TEXT NOT NULL,
              session TEXT NOT NULL,
              class_id TEXT NOT NULL DEFAULT '',
              payload TEXT NOT NULL,
              updated_at TEXT,
              PRIMARY KEY(student_id, term, session)
            );

            CREATE TABLE IF NOT EXISTS report_card_workflow (
              id TEXT PRIMARY KEY,
              payload TEXT NOT NULL,
              position INTEGER NOT NULL
            );
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def get_student_marks_record(self, student_id: str, term: str, session: str) -> Optional[StudentMarksRecord]:
        try:
            cur = self.conn.cursor()
            cur.execute(
                "SELECT payload FROM student_marks WHERE student_id=? AND term=? AND session=?",
                (student_id, normalize_term_label(term), session),
            )
            row = cur.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not load marks for student {student_id}: {exc}") from exc
        if not row:
            return None
        return load_marks_record(json.loads(row["payload"]))

    def _upsert_marks(self, record: StudentMarksRecord) -> None:
        payload = dump_marks_record(record)
        self.conn.execute(
            """INSERT INTO student_marks(student_id, term, session, class_id, payload, updated_at)
               VALUES(?,?,?,?,?,?)
               ON CONFLICT(student_id, term, session) DO UPDATE SET
                   class_id=excluded.class_id,
                   payload=excluded.payload,
                   updated_at=excluded.updated_at""",
            (
                record.student_id,
                record.term,
                record.session,
                record.class_id,
                json.dumps(payload),
                payload.get("last_updated"),
            ),
        )

    def _write_student_marks_record(self, record: StudentMarksRecord) -> None:
        self._write_student_marks_records([record])

    def _write_student_marks_records(self, records: List[StudentMarksRecord]) -> None:
        current = None
        try:
            with self.conn:
                for current in records:
                    self._upsert_marks(current)
        except sqlite3.Error as exc:
            student = current.student_id if current is not None else "?"
            raise PersistenceError(f"Could not save marks for student {student}: {exc}") from exc

    def list_student_marks_records(
        self,
        session: str,
        term: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> List[StudentMarksRecord]:
        query = "SELECT payload FROM student_marks WHERE session=?"
        params: list = [session]
        if term is not None:
            query += " AND term=?"
            params.append(normalize_term_label(term))
        if class_id is not None:
            query += " AND class_id=?"
            params.append(class_id)
        query += " ORDER BY student_id, term"
        try:
            cur = self.conn.cursor()
            cur.execute(query, params)
            rows = cur.fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not list marks for session {session}: {exc}") from exc

        records = [load_marks_record(json.loads(row["payload"])) for row in rows]
        return [record for record in records if record is not None]

    def get_workflow_records(self) -> List[WorkflowRecord]:
        try:
            cur = self.conn.cursor()
            cur.execute("SELECT payload FROM report_card_workflow ORDER BY position")
            rows = cur.fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not load report card workflow: {exc}") from exc

        records = [load_workflow_record(json.loads(row["payload"])) for row in rows]
        return [record for record in records if record is not None]

    def _write_workflow_records(self, records: List[WorkflowRecord]) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM report_card_workflow")
                self.conn.executemany(
                    "INSERT INTO report_card_workflow(id, payload, position) VALUES(?,?,?)",
                    [
                        (record.id, json.dumps(dump_workflow_record(record)), index)
                        for index, record in enumerate(records)
                    ],
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not save report card workflow: {exc}") from exc
