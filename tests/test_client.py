"""Tests for the document database client."""

import json

import httpx
import pytest
from tenacity import wait_none

from rebanho.core import client
from rebanho.core.config import ConfigurationError
from rebanho.core.writes import DeleteWrite, SetWrite, UpdateWrite

COMMIT = r"https://firestore\.googleapis\.com/v1/.*documents:commit.*"
RUN_QUERY = r"https://firestore\.googleapis\.com/v1/.*documents:runQuery.*"


@pytest.fixture
def no_retry_wait(monkeypatch):
    """Retry immediately instead of backing off."""
    monkeypatch.setattr(
        client,
        "firestore_request_with_retry",
        client.firestore_request_with_retry.retry_with(wait=wait_none()),
    )


class TestPaths:
    """Tests for resource names and ids."""

    def test_document_name(self):
        assert client.document_name("animals", "a1") == "projects/test-project/databases/(default)/documents/animals/a1"

    def test_new_document_id(self):
        ids = {client.new_document_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 20 and i.isalnum() for i in ids)


class TestRunQuery:
    """Tests for run_query."""

    async def test_sends_key_and_token(self, mock_firestore):
        route = mock_firestore.post(url__regex=RUN_QUERY).mock(return_value=httpx.Response(200, json=[]))

        await client.run_query("animals", "u1", token="tok")

        request = route.calls[0].request
        assert request.url.params["key"] == "test-api-key"
        assert request.headers["authorization"] == "Bearer tok"
        body = json.loads(request.content)
        assert body["structuredQuery"]["from"] == [{"collectionId": "animals"}]

    async def test_skips_entries_without_document(self, mock_firestore, firestore_document):
        mock_firestore.post(url__regex=RUN_QUERY).mock(
            return_value=httpx.Response(
                200,
                json=[
                    {"readTime": "2024-08-15T12:00:00Z"},
                    firestore_document("tasks", "t1", {"description": "x"}),
                ],
            )
        )

        result = await client.run_query("tasks", "u1")

        assert result == [("t1", {"description": "x"})]

    async def test_client_error_is_not_retried(self, mock_firestore):
        route = mock_firestore.post(url__regex=RUN_QUERY).mock(
            return_value=httpx.Response(403, json={"error": {"message": "Missing or insufficient permissions."}})
        )

        with pytest.raises(client.BackendError, match="insufficient permissions") as exc_info:
            await client.run_query("animals", "u1")

        assert exc_info.value.status_code == 403
        assert route.call_count == 1

    async def test_server_error_is_retried(self, mock_firestore, no_retry_wait):
        route = mock_firestore.post(url__regex=RUN_QUERY).mock(
            side_effect=[httpx.Response(503), httpx.Response(200, json=[])]
        )

        assert await client.run_query("animals", "u1") == []
        assert route.call_count == 2

    async def test_gives_up_after_max_retries(self, mock_firestore, no_retry_wait):
        route = mock_firestore.post(url__regex=RUN_QUERY).mock(return_value=httpx.Response(500))

        with pytest.raises(client.RetryableError):
            await client.run_query("animals", "u1")

        assert route.call_count == client.MAX_RETRIES

    async def test_missing_configuration(self, mock_firestore, monkeypatch):
        monkeypatch.setattr(client.settings, "firebase_api_key", None)
        route = mock_firestore.post(url__regex=RUN_QUERY).mock(return_value=httpx.Response(200, json=[]))

        with pytest.raises(ConfigurationError, match="FIREBASE_API_KEY"):
            await client.run_query("animals", "u1")

        assert not route.called


class TestCommit:
    """Tests for write serialization and commit."""

    def test_serialize_set(self):
        body = client.serialize_write(SetWrite("tasks", "t1", {"description": "x", "dueDate": None}))
        assert body == {
            "update": {
                "name": "projects/test-project/databases/(default)/documents/tasks/t1",
                "fields": {"description": {"stringValue": "x"}},
            }
        }

    def test_serialize_update_masks_deleted_fields(self):
        body = client.serialize_write(UpdateWrite("animals", "a1", {"nome": "Tufão"}, ("maeId",)))
        assert body["updateMask"] == {"fieldPaths": ["nome", "maeId"]}
        assert body["currentDocument"] == {"exists": True}
        assert body["update"]["fields"] == {"nome": {"stringValue": "Tufão"}}

    def test_serialize_delete(self):
        body = client.serialize_write(DeleteWrite("animals", "a1"))
        assert body == {"delete": "projects/test-project/databases/(default)/documents/animals/a1"}

    async def test_empty_batch_sends_nothing(self, mock_firestore):
        route = mock_firestore.post(url__regex=COMMIT).mock(return_value=httpx.Response(200, json={}))
        assert await client.commit([]) == {}
        assert not route.called

    async def test_commit_sends_all_writes(self, mock_firestore):
        route = mock_firestore.post(url__regex=COMMIT).mock(return_value=httpx.Response(200, json={"writeResults": []}))

        await client.commit([DeleteWrite("animals", "a1"), UpdateWrite("animals", "d1", {"historicoProgenie": []})])

        writes = json.loads(route.calls[0].request.content)["writes"]
        assert len(writes) == 2
        assert writes[1]["update"]["fields"] == {"historicoProgenie": {"arrayValue": {"values": []}}}

    async def test_commit_is_not_retried(self, mock_firestore):
        route = mock_firestore.post(url__regex=COMMIT).mock(return_value=httpx.Response(503))

        with pytest.raises(client.BackendError) as exc_info:
            await client.commit([DeleteWrite("animals", "a1")])

        assert exc_info.value.status_code == 503
        assert route.call_count == 1

    async def test_connection_error(self, mock_firestore):
        mock_firestore.post(url__regex=COMMIT).mock(side_effect=httpx.ConnectError("offline"))

        with pytest.raises(client.BackendError, match="Commit failed"):
            await client.commit([DeleteWrite("animals", "a1")])
