"""Document database client - REST access to the user-owned collections."""

import logging
import secrets
import string

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from rebanho.core.config import require_backend_config, settings
from rebanho.core.values import decode_document, encode_fields, encode_value
from rebanho.core.writes import DeleteWrite, SetWrite, UpdateWrite, Write

logger = logging.getLogger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"

# =============================================================================
# Retry Configuration (reads only - commits are never retried)
# =============================================================================

MAX_RETRIES = 3
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 10

_ID_ALPHABET = string.ascii_letters + string.digits


# =============================================================================
# Exceptions
# =============================================================================


class RetryableError(Exception):
    """Transient error that should be retried (timeouts, connection errors, 5xx)."""

    pass


class BackendError(Exception):
    """Non-retryable error from the document database."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


# =============================================================================
# Paths
# =============================================================================


def database_path() -> str:
    """Resource path of the configured database."""
    return f"projects/{settings.firebase_project_id}/databases/{settings.firestore_database}"


def documents_url() -> str:
    return f"{FIRESTORE_URL}/{database_path()}/documents"


def document_name(collection: str, doc_id: str) -> str:
    """Full resource name of a document."""
    return f"{database_path()}/documents/{collection}/{doc_id}"


def new_document_id() -> str:
    """Generate a 20-character document id, like the backend SDKs do."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(20))


# =============================================================================
# Low-level requests
# =============================================================================


async def firestore_request(url: str, payload: dict, token: str | None = None) -> dict | list:
    """POST a request to the document database without retry.

    Args:
        url: Full endpoint URL
        payload: JSON body
        token: Optional id token of the signed-in user

    Returns:
        Parsed JSON response

    Raises:
        httpx.HTTPStatusError: If the HTTP request fails
    """
    require_backend_config()
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    async with httpx.AsyncClient() as client:
        response = await client.post(
            url,
            params={"key": settings.firebase_api_key},
            headers=headers,
            json=payload,
            timeout=settings.request_timeout,
        )
        response.raise_for_status()
        return response.json()


def _error_message(e: httpx.HTTPStatusError) -> str:
    try:
        body = e.response.json()
        return body.get("error", {}).get("message") or e.response.text
    except ValueError:
        return e.response.text


@retry(
    retry=retry_if_exception_type(RetryableError),
    stop=stop_after_attempt(MAX_RETRIES),
    wait=wait_exponential_jitter(initial=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS, jitter=2),
    reraise=True,
)
async def firestore_request_with_retry(url: str, payload: dict, token: str | None = None) -> dict | list:
    """POST a read request with automatic retry on transient errors.

    Retries on:
    - Timeouts
    - Connection errors
    - HTTP 5xx errors

    Raises:
        BackendError: If a non-retryable error occurs
        RetryableError: If all retries fail
    """
    try:
        return await firestore_request(url, payload, token)
    except httpx.TimeoutException as e:
        raise RetryableError(f"Request timed out: {e}") from e
    except httpx.ConnectError as e:
        raise RetryableError(f"Connection failed: {e}") from e
    except httpx.HTTPStatusError as e:
        message = _error_message(e)
        if e.response.status_code >= 500:
            raise RetryableError(f"HTTP {e.response.status_code}: {message}") from e
        raise BackendError(f"HTTP {e.response.status_code}: {message}", e.response.status_code) from e


# =============================================================================
# Queries
# =============================================================================


def owner_query(collection: str, owner_id: str) -> dict:
    """Structured query for every document of a collection owned by a user."""
    return {
        "structuredQuery": {
            "from": [{"collectionId": collection}],
            "where": {
                "fieldFilter": {
                    "field": {"fieldPath": "userId"},
                    "op": "EQUAL",
                    "value": encode_value(owner_id),
                }
            },
        }
    }


async def run_query(collection: str, owner_id: str, token: str | None = None) -> list[tuple[str, dict]]:
    """Fetch all documents of a collection owned by ``owner_id``.

    Returns:
        List of (document_id, decoded fields) tuples
    """
    result = await firestore_request_with_retry(
        f"{documents_url()}:runQuery",
        owner_query(collection, owner_id),
        token,
    )
    # Each entry carries a readTime; only some carry a document
    return [decode_document(entry["document"]) for entry in result if entry.get("document")]


# =============================================================================
# Writes
# =============================================================================


def serialize_write(write: Write) -> dict:
    """Convert a pending write into the commit request representation."""
    if isinstance(write, DeleteWrite):
        return {"delete": document_name(write.collection, write.doc_id)}

    body = {
        "update": {
            "name": document_name(write.collection, write.doc_id),
            "fields": encode_fields(write.data),
        }
    }
    if isinstance(write, UpdateWrite):
        body["updateMask"] = {"fieldPaths": write.field_paths}
        body["currentDocument"] = {"exists": True}
    elif not isinstance(write, SetWrite):
        raise TypeError(f"Unknown write type: {type(write).__name__}")
    return body


async def commit(writes: list[Write], token: str | None = None) -> dict:
    """Apply a batch of writes atomically.

    Commits are never retried: a failed batch leaves every document unchanged.

    Raises:
        BackendError: If the commit fails for any reason
    """
    if not writes:
        return {}

    payload = {"writes": [serialize_write(w) for w in writes]}
    try:
        return await firestore_request(f"{documents_url()}:commit", payload, token)
    except httpx.HTTPStatusError as e:
        raise BackendError(
            f"Commit failed with HTTP {e.response.status_code}: {_error_message(e)}",
            e.response.status_code,
        ) from e
    except httpx.HTTPError as e:
        raise BackendError(f"Commit failed: {e}") from e
