"""Unit tests for the chunk -> embed -> store pipeline."""

import pytest
from sqlalchemy.exc import OperationalError

from docvector.chunker import ChunkingOptions
from docvector.errors import DocumentBusy, InvalidConfiguration
from docvector.services import vector_service
from docvector.services.vector_service import process_document_for_vector, process_stored_document

from .conftest import FakeSession, StubEmbedder, chunk_store_handler

TEXT = "Intro paragraph.\n\nSecond paragraph.\n\nThird paragraph with BROKEN data."
OPTIONS = ChunkingOptions(chunk_size=20, chunk_overlap=0)


def _run(factory, embedder=None, **kwargs):
    return process_document_for_vector(
        "doc-1", TEXT, OPTIONS, embedder=embedder or StubEmbedder(), session_factory=factory, delay=0, **kwargs
    )


class TestProcessDocumentForVector:

    def test_happy_path_counts(self, make_session):
        session, factory = make_session(chunk_store_handler())

        result = _run(factory)

        assert result.success is True
        assert result.error is None
        assert result.total_chunks == 3
        assert result.embedded_chunks == 3
        assert result.failed_chunks == 0
        assert result.total_tokens == (len(TEXT) + 3) // 4
        assert [c.chunk_index for c in result.chunks] == [0, 1, 2]
        assert all(c.embedding_model == "stub-embed-v1" for c in result.chunks)
        assert session.committed == 1

    def test_reprocessing_replaces_instead_of_appending(self, make_session):
        session, factory = make_session(chunk_store_handler())

        first = _run(factory)
        second = _run(factory)

        assert first.total_chunks == second.total_chunks == 3
        deletes = session.sql_starting_with("DELETE FROM document_chunks")
        inserts = session.sql_starting_with("INSERT INTO document_chunks")
        assert len(deletes) == 2
        assert len(inserts) == 6
        # each run deletes before it inserts
        kinds = [sql.split()[0] for sql, _ in session.statements]
        assert kinds == ["SELECT", "DELETE"] + ["INSERT"] * 3 + ["SELECT", "DELETE"] + ["INSERT"] * 3

    def test_embedding_failure_skipped_is_reported(self, make_session):
        _, factory = make_session(chunk_store_handler())

        result = _run(factory, StubEmbedder(fail_on=("BROKEN",)), on_chunk_failure="skip")

        assert result.success is True
        assert result.total_chunks == 3
        assert result.embedded_chunks == 2
        assert result.failed_chunks == 1
        assert result.chunks[2].has_embedding is False
        assert result.outcomes[2].status == "embedding_error"

    def test_embedding_failure_abort_fails_run_without_touching_store(self, make_session):
        session, factory = make_session(chunk_store_handler())

        result = _run(factory, StubEmbedder(fail_on=("BROKEN",)), on_chunk_failure="abort")

        assert result.success is False
        assert "ThrottlingException" in result.error
        assert result.chunks == []
        assert session.statements == []

    def test_storage_failure_skipped(self, make_session):
        _, factory = make_session(chunk_store_handler(fail_indices={1}))

        result = _run(factory, on_chunk_failure="skip")

        assert result.success is True
        assert result.total_chunks == 2
        assert [o.status for o in result.outcomes] == ["ok", "storage_error", "ok"]

    def test_storage_failure_abort(self, make_session):
        session, factory = make_session(chunk_store_handler(fail_indices={0}))

        result = _run(factory, on_chunk_failure="abort")

        assert result.success is False
        assert result.error.startswith("store: OperationalError")
        assert session.rolled_back == 1

    def test_database_error_is_reported(self, make_session):
        def handler(sql, params):
            raise OperationalError("SELECT", params, Exception("connection refused"))

        _, factory = make_session(handler)

        result = _run(factory)

        assert result.success is False
        assert result.error.startswith("database: OperationalError")

    def test_missing_document(self, make_session):
        _, factory = make_session(chunk_store_handler(document_exists=False))

        result = _run(factory)

        assert result.success is False
        assert "not found" in result.error

    def test_blank_text_is_unsuccessful(self, make_session):
        session, factory = make_session(chunk_store_handler())

        result = process_document_for_vector(
            "doc-1", " \n\n ", OPTIONS, embedder=StubEmbedder(), session_factory=factory, delay=0
        )

        assert result.success is False
        assert result.error == "Document has no extractable text"
        assert result.total_chunks == 0
        assert session.statements == []

    def test_invalid_options_raise(self, make_session):
        _, factory = make_session(chunk_store_handler())

        with pytest.raises(InvalidConfiguration):
            process_document_for_vector(
                "doc-1", TEXT, ChunkingOptions(chunk_size=10, chunk_overlap=10),
                embedder=StubEmbedder(), session_factory=factory,
            )
        with pytest.raises(InvalidConfiguration):
            _run(factory, on_chunk_failure="ignore")


class FakeDocumentService:
    def __init__(self, text=TEXT, busy=False):
        self.text = text
        self.busy = busy
        self.finished = []

    def mark_processing(self, document_id, organization_id, session_factory=None):
        if self.busy:
            raise DocumentBusy(f"Document {document_id} is already being processed")

    def get_document(self, document_id, organization_id, include_text=False, session_factory=None):
        return {"id": document_id, "extracted_text": self.text}

    def finish_processing(self, document_id, success, error=None, session_factory=None):
        self.finished.append((document_id, success, error))


class TestProcessStoredDocument:

    @pytest.fixture
    def store_factory(self):
        session = FakeSession(chunk_store_handler())
        return lambda: session

    def test_completed(self, monkeypatch, store_factory):
        docs = FakeDocumentService()
        monkeypatch.setattr(vector_service, "document_service", docs)

        result = process_stored_document(
            "doc-1", "org-1", OPTIONS, embedder=StubEmbedder(), session_factory=store_factory
        )

        assert result.success is True
        assert docs.finished == [("doc-1", True, None)]

    def test_failed_run_is_recorded(self, monkeypatch, store_factory):
        docs = FakeDocumentService(text="")
        monkeypatch.setattr(vector_service, "document_service", docs)

        result = process_stored_document(
            "doc-1", "org-1", OPTIONS, embedder=StubEmbedder(), session_factory=store_factory
        )

        assert result.success is False
        assert docs.finished == [("doc-1", False, "Document has no extractable text")]

    def test_busy_document_is_not_touched(self, monkeypatch, store_factory):
        docs = FakeDocumentService(busy=True)
        monkeypatch.setattr(vector_service, "document_service", docs)

        with pytest.raises(DocumentBusy):
            process_stored_document("doc-1", "org-1", OPTIONS, embedder=StubEmbedder(),
                                    session_factory=store_factory)

        assert docs.finished == []

    def test_unexpected_error_marks_failed_and_propagates(self, monkeypatch, store_factory):
        docs = FakeDocumentService()
        monkeypatch.setattr(vector_service, "document_service", docs)

        def explode(*args, **kwargs):
            raise RuntimeError("worker died")

        monkeypatch.setattr(vector_service, "process_document_for_vector", explode)

        with pytest.raises(RuntimeError):
            process_stored_document("doc-1", "org-1", OPTIONS, embedder=StubEmbedder(),
                                    session_factory=store_factory)

        assert docs.finished == [("doc-1", False, "pipeline: RuntimeError: worker died")]
