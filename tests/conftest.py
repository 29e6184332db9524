import os

# No rate-limit pauses in tests; must be set before docvector.config is imported
os.environ.setdefault("EMBEDDING_REQUEST_DELAY", "0")
os.environ.setdefault("EMBEDDING_CONCURRENCY", "1")

from contextlib import contextmanager
from datetime import datetime, timezone

import pytest

from docvector.embedding import Embedder


class FakeResult:
    """Just enough of sqlalchemy's Result for the code under test."""

    def __init__(self, rows=None, rowcount=0):
        self._rows = list(rows or [])
        self.rowcount = rowcount

    def first(self):
        return self._rows[0] if self._rows else None

    def mappings(self):
        return self

    def all(self):
        return list(self._rows)


class FakeSession:
    """
    Records every executed statement; `handler(sql, params)` decides what each
    statement returns or raises.
    """

    def __init__(self, handler):
        self.handler = handler
        self.statements = []
        self.committed = 0
        self.rolled_back = 0
        self.savepoints_rolled_back = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    @contextmanager
    def begin(self):
        try:
            yield self
        except Exception:
            self.rolled_back += 1
            raise
        self.committed += 1

    @contextmanager
    def begin_nested(self):
        try:
            yield self
        except Exception:
            self.savepoints_rolled_back += 1
            raise

    def execute(self, stmt, params=None):
        sql = " ".join(str(stmt).split())
        params = params or {}
        self.statements.append((sql, params))
        return self.handler(sql, params)

    def sql_starting_with(self, prefix):
        return [(sql, params) for sql, params in self.statements if sql.startswith(prefix)]


class StubEmbedder(Embedder):
    """Returns a fixed unit vector; raises for texts containing a marker in `fail_on`."""

    default_model = "stub-embed-v1"

    def __init__(self, dimensions=4, fail_on=()):
        super().__init__(dimensions=dimensions)
        self.fail_on = tuple(fail_on)
        self.calls = []

    def _request(self, text):
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise RuntimeError("ThrottlingException: rate exceeded")
        return [1.0] + [0.0] * (self.dimensions - 1)


CREATED_AT = datetime(2026, 1, 1, tzinfo=timezone.utc)


def chunk_store_handler(fail_indices=(), document_exists=True):
    """Handler emulating the documents / document_chunks tables for replace_chunks."""
    from sqlalchemy.exc import OperationalError

    def handler(sql, params):
        if sql.startswith("SELECT id FROM documents"):
            return FakeResult([(params["id"],)] if document_exists else [])
        if sql.startswith("DELETE FROM document_chunks"):
            return FakeResult(rowcount=2)
        if sql.startswith("INSERT INTO document_chunks"):
            if params["idx"] in fail_indices:
                raise OperationalError("INSERT", params, Exception("could not extend file"))
            return FakeResult([(CREATED_AT,)])
        raise AssertionError(f"unexpected statement: {sql}")

    return handler


@pytest.fixture
def stub_embedder():
    return StubEmbedder()


@pytest.fixture
def make_session():
    def factory(handler):
        session = FakeSession(handler)
        return session, (lambda: session)
    return factory
