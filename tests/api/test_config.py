"""
Tests for API configuration.
"""

import pytest
from pydantic import ValidationError

from api.config import APIConfig


def test_defaults():
    settings = APIConfig(_env_file=None)
    assert settings.port == 3000
    assert settings.mongodb_database == "bookHeaven"
    assert settings.books_collection == "books"
    assert settings.max_body_bytes == 10 * 1024 * 1024
    assert settings.get_log_file_path() is None


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("MONGODB_URI", "mongodb://db.internal:27017")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    settings = APIConfig(_env_file=None)
    assert settings.port == 8080
    assert settings.mongodb_uri == "mongodb://db.internal:27017"
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("field,value", [
    ("port", 0),
    ("port", 70000),
    ("max_body_bytes", 0),
    ("log_level", "VERBOSE"),
    ("log_format", "xml"),
])
def test_rejects_invalid_values(field, value):
    with pytest.raises(ValidationError):
        APIConfig(_env_file=None, **{field: value})
