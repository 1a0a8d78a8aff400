import hashlib
import json
import logging
from typing import Dict, List, Optional

from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.query import Query
from appwrite.services.databases import Databases

from reportcards.config.settings import Settings, settings
from reportcards.core.records import StudentMarksRecord, normalize_term_label
from reportcards.core.workflow import WorkflowRecord
from reportcards.services.documents import (
    dump_marks_record,
    dump_workflow_record,
    load_marks_record,
    load_workflow_record,
)
from reportcards.services.persistence import PersistenceAdapter, PersistenceError

logger = logging.getLogger(__name__)

PAGE_LIMIT = 5000


def document_id(*parts: str) -> str:
    digest = hashlib.sha256("::".join(parts).encode("utf-8")).hexdigest()
    return digest[:36]


class AppwritePersistence(PersistenceAdapter):
    def __init__(
        self,
        endpoint: str,
        project_id: str,
        api_key: str,
        database_id: str,
        marks_collection_id: str,
        workflow_collection_id: str,
        db: Optional[Databases] = None,
    ) -> None:
        super().__init__()
        if db is None:
            if not endpoint:
                raise PersistenceError("Missing APPWRITE_ENDPOINT in environment")
            if not project_id:
                raise PersistenceError("Missing APPWRITE_PROJECT_ID in environment")
            if not api_key:
                raise PersistenceError("Missing APPWRITE_API_KEY in environment")
        if not database_id:
            raise PersistenceError("Missing APPWRITE_DATABASE_ID in environment")

        self.database_id = database_id
        self.marks_collection_id = marks_collection_id
        self.workflow_collection_id = workflow_collection_id

        if db is None:
            client = Client()
            client.set_endpoint(endpoint.rstrip("/"))
            client.set_project(project_id)
            client.set_key(api_key)
            db = Databases(client)
        self.db = db

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "AppwritePersistence":
        return cls(
            endpoint=config.appwrite_endpoint,
            project_id=config.appwrite_project_id,
            api_key=config.appwrite_api_key,
            database_id=config.appwrite_database_id,
            marks_collection_id=config.appwrite_marks_collection_id,
            workflow_collection_id=config.appwrite_workflow_collection_id,
        )

    def _list_documents(self, collection_id: str, queries: List[str]) -> List[Dict]:
        try:
            result = self.db.list_documents(self.database_id, collection_id, queries=queries)
            return list(result.get("documents", []))
        except AppwriteException as exc:
            raise PersistenceError(str(exc)) from exc

    def _get_document(self, collection_id: str, doc_id: str) -> Optional[Dict]:
        try:
            return self.db.get_document(self.database_id, collection_id, doc_id)
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 404:
                return None
            raise PersistenceError(str(exc)) from exc

    def _upsert_document(self, collection_id: str, doc_id: str, data: Dict) -> None:
        try:
            self.db.update_document(self.database_id, collection_id, doc_id, data)
            return
        except AppwriteException as exc:
            if getattr(exc, "code", None) != 404:
                raise PersistenceError(str(exc)) from exc
        try:
            self.db.create_document(self.database_id, collection_id, doc_id, data)
        except AppwriteException as exc:
            raise PersistenceError(str(exc)) from exc

    def _delete_document(self, collection_id: str, doc_id: str) -> None:
        try:
            self.db.delete_document(self.database_id, collection_id, doc_id)
        except AppwriteException as exc:
            raise PersistenceError(str(exc)) from exc

    @staticmethod
    def _payload(doc: Dict) -> Optional[Dict]:
        raw = doc.get("payload")
        if not isinstance(raw, str) or not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def get_student_marks_record(self, student_id: str, term: str, session: str) -> Optional[StudentMarksRecord]:
        term = normalize_term_label(term)
        doc = self._get_document(self.marks_collection_id, document_id(student_id, term, session))
        if not doc:
            return None
        payload = self._payload(doc)
        if payload is None:
            return None
        return load_marks_record(payload)

    def _write_student_marks_record(self, record: StudentMarksRecord) -> None:
        payload = dump_marks_record(record)
        self._upsert_document(
            self.marks_collection_id,
            document_id(record.student_id, record.term, record.session),
            {
                "student_id": record.student_id,
                "term": record.term,
                "session": record.session,
                "class_id": record.class_id,
                "payload": json.dumps(payload),
                "updated_at": payload.get("last_updated"),
            },
        )

    def _write_student_marks_records(self, records: List[StudentMarksRecord]) -> None:
        # Appwrite has no multi-document transaction; restore earlier writes on failure.
        previous = [self.get_student_marks_record(r.student_id, r.term, r.session) for r in records]
        written: List[StudentMarksRecord] = []
        try:
            for record in records:
                self._write_student_marks_record(record)
                written.append(record)
        except PersistenceError:
            for record, before in zip(written, previous):
                self._restore_marks(record, before)
            raise

    def _restore_marks(self, record: StudentMarksRecord, before: Optional[StudentMarksRecord]) -> None:
        try:
            if before is None:
                self._delete_document(
                    self.marks_collection_id, document_id(record.student_id, record.term, record.session)
                )
            else:
                self._write_student_marks_record(before)
        except PersistenceError:
            logger.exception("Could not roll back marks for student %s", record.student_id)

    def list_student_marks_records(
        self,
        session: str,
        term: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> List[StudentMarksRecord]:
        queries = [Query.equal("session", [session])]
        if term is not None:
            queries.append(Query.equal("term", [normalize_term_label(term)]))
        if class_id is not None:
            queries.append(Query.equal("class_id", [class_id]))
        queries.append(Query.limit(PAGE_LIMIT))

        results: List[StudentMarksRecord] = []
        for doc in self._list_documents(self.marks_collection_id, queries):
            payload = self._payload(doc)
            record = load_marks_record(payload) if payload is not None else None
            if record is not None:
                results.append(record)
        return results

    def get_workflow_records(self) -> List[WorkflowRecord]:
        docs = self._list_documents(
            self.workflow_collection_id,
            [Query.order_asc("position"), Query.limit(PAGE_LIMIT)],
        )
        results: List[WorkflowRecord] = []
        for doc in docs:
            payload = self._payload(doc)
            record = load_workflow_record(payload) if payload is not None else None
            if record is not None:
                results.append(record)
        return results

    def _write_workflow_records(self, records: List[WorkflowRecord]) -> None:
        wanted = {document_id(record.id): record for record in records}
        existing = self._list_documents(self.workflow_collection_id, [Query.limit(PAGE_LIMIT)])
        for doc in existing:
            if doc.get("$id") not in wanted:
                self._delete_document(self.workflow_collection_id, doc["$id"])

        for index, (doc_id, record) in enumerate(wanted.items()):
            self._upsert_document(
                self.workflow_collection_id,
                doc_id,
                {
                    "record_id": record.id,
                    "status": record.status.value,
                    "position": index,
                    "payload": json.dumps(dump_workflow_record(record)),
                },
            )
