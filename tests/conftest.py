# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Every transactional test runs against a fresh in-memory SQLite database
# with FK enforcement on, so ON DELETE CASCADE, the unique constraint on
# analyses and the audit immutability hooks behave as they do on
# PostgreSQL. No external services are needed.
#
# Fakes:
#   FakeBlobStore — dict-backed BlobStore, can be told to fail
#   FakeProvider  — LLMProvider that counts calls and returns canned text
# =============================================================================

from __future__ import annotations

import json
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jobtrackr.db.engine import enable_sqlite_foreign_keys, make_session_scope
from jobtrackr.db.models import Base
from jobtrackr.services.errors import StorageFailure
from jobtrackr.services.llm import LLMResponse

JOB_DESCRIPTION = (
    "We are hiring a backend engineer with Python, PostgreSQL and Celery "
    "experience to build our job tracking platform."
)

VALID_ANALYSIS = {
    "score": 78,
    "findings": [
        {"kind": "strength", "point": "Python", "detail": "Five years of Django"},
        {"kind": "gap", "point": "Celery", "detail": "No queue experience listed"},
    ],
    "suggestions": ["Mention background job work explicitly"],
}


class FakeBlobStore:
    """In-memory BlobStore with switchable failures."""

    def __init__(self, fail_put: bool = False, fail_delete: bool = False) -> None:
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_put = fail_put
        self.fail_delete = fail_delete

    def put(self, key: str, data: bytes) -> str:
        if self.fail_put:
            raise StorageFailure(f"put failed for {key}")
        self.blobs[key] = data
        return key

    def read(self, key: str) -> bytes:
        try:
            return self.blobs[key]
        except KeyError as exc:
            raise StorageFailure(f"missing blob {key}") from exc

    def delete(self, key: str) -> None:
        if self.fail_delete:
            raise StorageFailure(f"delete failed for {key}")
        self.deleted.append(key)
        self.blobs.pop(key, None)


class FakeProvider:
    """LLMProvider stand-in. `content` may be a str, or an exception to raise."""

    def __init__(self, content: str | Exception | None = None) -> None:
        self.content = json.dumps(VALID_ANALYSIS) if content is None else content
        self.calls: list[str] = []

    def complete(self, prompt: str, system: str | None = None, json_mode: bool = False) -> LLMResponse:
        self.calls.append(prompt)
        if isinstance(self.content, Exception):
            raise self.content
        return LLMResponse(content=self.content, model="fake-model", input_tokens=10, output_tokens=20)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def scope(session_factory):
    """A session_scope bound to the in-memory database."""
    return make_session_scope(session_factory)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def application_data():
    return {
        "company_name": "Acme",
        "position": "Backend Engineer",
        "application_date": date(2026, 3, 1),
        "job_description": JOB_DESCRIPTION,
    }
