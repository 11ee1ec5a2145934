"""Shared test fixtures."""

import json
import sys
from datetime import date
from pathlib import Path

import httpx
import pytest
import respx

# Add src/ to path so tests can import rebanho
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rebanho.ai import gemini  # noqa: E402
from rebanho.core.config import settings  # noqa: E402
from rebanho.core.values import encode_fields  # noqa: E402
from rebanho.data.models import Animal, Raca, Sexo  # noqa: E402


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Point every service at a fake project."""
    monkeypatch.setattr(settings, "firebase_project_id", "test-project")
    monkeypatch.setattr(settings, "firebase_api_key", "test-api-key")
    monkeypatch.setattr(settings, "firebase_storage_bucket", "test-bucket")
    monkeypatch.setattr(settings, "gemini_api_key", "test-gemini-key")
    monkeypatch.setattr(settings, "gemini_model", "gemini-2.5-flash")
    monkeypatch.setattr(settings, "rebanho_user_id", None)
    monkeypatch.setattr(settings, "rebanho_id_token", None)
    monkeypatch.setattr(settings, "display_units", "metric")
    gemini.reset_ai_client()
    yield settings
    gemini.reset_ai_client()


@pytest.fixture
def mock_firestore():
    """Mock document database REST responses."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def mock_storage():
    """Mock file storage REST responses."""
    with respx.mock(base_url="https://firebasestorage.googleapis.com/v0", assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def mock_gemini():
    """Mock Gemini API responses."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def mock_identity():
    """Mock sign-in API responses."""
    with respx.mock(base_url="https://identitytoolkit.googleapis.com/v1", assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def make_animal():
    """Factory for animals with sensible defaults."""

    def _make(
        animal_id: str,
        brinco: str,
        sexo: Sexo = Sexo.FEMEA,
        data_nascimento: date = date(2020, 1, 1),
        **fields,
    ) -> Animal:
        return Animal(
            id=animal_id,
            brinco=brinco,
            raca=fields.pop("raca", Raca.HEREFORD),
            sexo=sexo,
            data_nascimento=data_nascimento,
            **fields,
        )

    return _make


def _firestore_document(collection: str, doc_id: str, fields: dict) -> dict:
    """A runQuery result entry for a document with plain-value fields."""
    return {
        "document": {
            "name": f"projects/test-project/databases/(default)/documents/{collection}/{doc_id}",
            "fields": encode_fields(fields),
        },
        "readTime": "2024-08-15T12:00:00.000000Z",
    }


@pytest.fixture
def firestore_document():
    """Factory for runQuery result entries."""
    return _firestore_document


@pytest.fixture
def query_responder():
    """Build a runQuery side effect answering per collection.

    Usage: ``route.mock(side_effect=query_responder({"animals": [...]}))``
    where each value is a list of runQuery entries.
    """

    def _build(by_collection: dict[str, list[dict]]):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            collection = body["structuredQuery"]["from"][0]["collectionId"]
            entries = by_collection.get(collection)
            if entries is None:
                # An empty result still carries a readTime entry
                entries = [{"readTime": "2024-08-15T12:00:00.000000Z"}]
            return httpx.Response(200, json=entries)

        return handler

    return _build
