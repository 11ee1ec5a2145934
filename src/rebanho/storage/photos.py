"""Animal photo upload.

Photos are stored under ``animal_photos/<userId>/<animalId>/<timestampMs>.<ext>``
and the upload returns a public download URL.

An upload that has not sent a single byte after the stall timeout is
cancelled and reported as ``stalled``. That is the only cancellation treated
as an error: a cancellation requested by the caller propagates as a plain
``asyncio.CancelledError``.
"""

import asyncio
import logging
import mimetypes
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from rebanho.core.config import settings

logger = logging.getLogger(__name__)

STORAGE_URL = "https://firebasestorage.googleapis.com/v0"
CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int, int], None]

# code -> (message, is_config_error)
UPLOAD_ERRORS: dict[str, tuple[str, bool]] = {
    "storage/unauthorized": (
        "Permissão Negada. Verifique suas Regras de Segurança do Firebase Storage.",
        True,
    ),
    "storage/bucket-not-found": (
        "Configuração do 'storageBucket' parece estar incorreta. O bucket não foi encontrado.",
        True,
    ),
    "storage/project-not-found": (
        "O projeto Firebase não foi encontrado. Verifique a variável FIREBASE_PROJECT_ID.",
        True,
    ),
    "storage/offline": ("Falha de conexão. Verifique sua internet.", False),
    "storage/cors": (
        "Erro de CORS. Verifique as configurações do bucket no Google Cloud Console.",
        True,
    ),
    "storage/unknown": (
        "Ocorreu um erro desconhecido. Verifique os logs para detalhes.",
        True,
    ),
    "storage/stalled": (
        "O upload travou em 0%. Isso geralmente indica um erro de configuração do 'storageBucket' "
        "ou um problema de CORS no seu projeto Google Cloud.",
        True,
    ),
    "storage/unavailable": (
        "O serviço de armazenamento (Firebase Storage) não está disponível. "
        "Verifique a variável FIREBASE_STORAGE_BUCKET.",
        True,
    ),
}


class UploadError(Exception):
    """Upload failure with a user-facing message."""

    def __init__(self, code: str, message: str, is_config_error: bool = True):
        self.code = code
        self.is_config_error = is_config_error
        super().__init__(message)


def classify_upload_error(code: str | None, message: str = "", online: bool = True) -> UploadError:
    """Map a storage error code to one of the fixed user-facing errors."""
    if code == "storage/object-not-found":
        code = "storage/bucket-not-found"
    elif code == "storage/unknown":
        if not online:
            code = "storage/offline"
        elif "CORS" in (message or ""):
            code = "storage/cors"

    if code in UPLOAD_ERRORS:
        text, is_config_error = UPLOAD_ERRORS[code]
        return UploadError(code, text, is_config_error)

    return UploadError(
        code or "storage/unknown",
        "O upload falhou devido a um problema de configuração ou permissão. "
        f"Código: {code or 'desconhecido'}.",
    )


def _status_code_to_error(status: int, message: str) -> str:
    if status in (401, 403):
        return "storage/unauthorized"
    if status == 404:
        return "storage/project-not-found" if "project" in message.lower() else "storage/bucket-not-found"
    return "storage/unknown"


def photo_path(user_id: str, animal_id: str, filename: str, timestamp_ms: int | None = None) -> str:
    """Storage path for a new photo of an animal."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else "jpg"
    return f"animal_photos/{user_id}/{animal_id}/{timestamp_ms}.{extension}"


def download_url(bucket: str, path: str, token: str) -> str:
    """Public download URL for a stored object."""
    return f"{STORAGE_URL}/b/{bucket}/o/{quote(path, safe='')}?alt=media&token={token}"


@dataclass
class _Progress:
    total: int
    sent: int = 0
    timed_out: bool = False


async def _chunks(content: bytes, progress: _Progress, on_progress: ProgressCallback | None) -> AsyncIterator[bytes]:
    for start in range(0, len(content), CHUNK_SIZE):
        chunk = content[start : start + CHUNK_SIZE]
        yield chunk
        progress.sent += len(chunk)
        if on_progress:
            on_progress(progress.sent, progress.total)


async def _cancel_if_stalled(upload: asyncio.Task, progress: _Progress, timeout: float) -> None:
    await asyncio.sleep(timeout)
    if progress.sent == 0 and not upload.done():
        progress.timed_out = True
        upload.cancel()


async def upload_photo(
    user_id: str,
    animal_id: str,
    content: bytes,
    filename: str,
    *,
    token: str | None = None,
    on_progress: ProgressCallback | None = None,
    stall_timeout: float | None = None,
) -> str:
    """Upload a photo and return its public download URL.

    Args:
        user_id: Owner of the animal
        animal_id: Animal the photo belongs to
        content: File bytes
        filename: Original file name (used for the extension and content type)
        token: Optional id token of the signed-in user
        on_progress: Called with (bytes_sent, total_bytes) as the upload advances
        stall_timeout: Seconds allowed at 0 bytes (defaults to settings)

    Raises:
        UploadError: On any failure other than a caller cancellation
    """
    bucket = settings.firebase_storage_bucket
    if not bucket:
        raise classify_upload_error("storage/unavailable")

    path = photo_path(user_id, animal_id, filename)
    content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    headers = {"Content-Type": content_type}
    if token:
        headers["Authorization"] = f"Firebase {token}"

    progress = _Progress(total=len(content))

    async def send() -> httpx.Response:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{STORAGE_URL}/b/{bucket}/o",
                params={"name": path},
                headers={**headers, "Content-Length": str(len(content))},
                content=_chunks(content, progress, on_progress),
                timeout=settings.request_timeout,
            )
            response.raise_for_status()
            return response

    if stall_timeout is None:
        stall_timeout = settings.upload_stall_timeout

    upload = asyncio.create_task(send())
    watchdog = asyncio.create_task(_cancel_if_stalled(upload, progress, stall_timeout))
    try:
        response = await upload
    except asyncio.CancelledError:
        if progress.timed_out:
            logger.error("Upload of %s stalled at 0 bytes", path)
            raise classify_upload_error("storage/stalled") from None
        logger.info("Upload of %s cancelled", path)
        raise
    except httpx.HTTPStatusError as e:
        message = e.response.text
        logger.error("Upload of %s failed: HTTP %s %s", path, e.response.status_code, message)
        raise classify_upload_error(_status_code_to_error(e.response.status_code, message), message) from e
    except httpx.ConnectError as e:
        logger.error("Upload of %s failed: %s", path, e)
        raise classify_upload_error("storage/unknown", str(e), online=False) from e
    except httpx.HTTPError as e:
        logger.error("Upload of %s failed: %s", path, e)
        raise classify_upload_error("storage/unknown", str(e)) from e
    finally:
        watchdog.cancel()

    data = response.json()
    download_token = (data.get("downloadTokens") or "").split(",")[0]
    return download_url(bucket, data.get("name", path), download_token)
