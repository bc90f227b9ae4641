"""
Pytest configuration and shared fixtures.
"""

import copy
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from api.auth import TokenVerificationError
from api.config import APIConfig
from api.database import BookService
from api.main import create_app


class FakeCursor:
    """Minimal stand-in for a motor cursor."""

    def __init__(self, docs):
        self.docs = docs

    async def to_list(self, length=None):
        return self.docs if length is None else self.docs[:length]


class FakeBooksCollection:
    """
    In-memory double for the motor collection calls used by BookService.
    Filters support top-level equality only, which is all the service issues.
    """

    def __init__(self):
        self.docs = []
        self.calls = []
        self.error = None

    def _check(self, name, *args):
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error

    def _matches(self, doc, query):
        return all(doc.get(key) == value for key, value in query.items())

    async def insert_one(self, doc):
        self._check("insert_one", doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    def find(self, query=None):
        self._check("find", query)
        query = query or {}
        return FakeCursor([copy.deepcopy(d) for d in self.docs if self._matches(d, query)])

    async def find_one(self, query):
        self._check("find_one", query)
        for doc in self.docs:
            if self._matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def update_one(self, query, update):
        self._check("update_one", query, update)
        for doc in self.docs:
            if self._matches(doc, query):
                doc.update(copy.deepcopy(update["$set"]))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        self._check("delete_one", query)
        for index, doc in enumerate(self.docs):
            if self._matches(doc, query):
                del self.docs[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def get(self, book_id):
        for doc in self.docs:
            if str(doc["_id"]) == book_id:
                return doc
        return None


class FakeTokenVerifier:
    """Identity provider double keyed by token string."""

    def __init__(self, tokens):
        self.tokens = tokens
        self.calls = []

    async def verify(self, token):
        self.calls.append(token)
        if token not in self.tokens:
            raise TokenVerificationError("Invalid ID token")
        return dict(self.tokens[token])


ALICE = {"email": "u1@x.com", "name": "Alice"}
BOB = {"email": "u2@x.com"}


@pytest.fixture
def books_collection():
    return FakeBooksCollection()


@pytest.fixture
def token_verifier():
    return FakeTokenVerifier({
        "alice-token": ALICE,
        "bob-token": BOB,
        "no-email-token": {"uid": "abc123"},
    })


@pytest.fixture
def api_settings():
    return APIConfig(max_body_bytes=64 * 1024, _env_file=None)


@pytest.fixture
def app(api_settings, books_collection, token_verifier):
    return create_app(
        settings=api_settings,
        book_service=BookService(books_collection),
        token_verifier=token_verifier
    )


@pytest.fixture
def client(app):
    """Create test client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def alice_headers():
    return {"Authorization": "Bearer alice-token"}


@pytest.fixture
def bob_headers():
    return {"Authorization": "Bearer bob-token"}
