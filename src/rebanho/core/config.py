from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# .env file is in the project root (parent of src/)
# Only use if it exists (CI uses environment variables directly)
# Path: core/config.py -> rebanho -> src -> project root -> .env
_ENV_FILE = Path(__file__).parent.parent.parent.parent / ".env"
_ENV_FILE = _ENV_FILE if _ENV_FILE.exists() else None

CONFIG_INSTRUCTIONS = """\
A configuração do Firebase não foi encontrada.

Defina as variáveis de ambiente abaixo (ou crie um arquivo .env na raiz do projeto):

  FIREBASE_PROJECT_ID=<id do projeto>
  FIREBASE_API_KEY=<chave de API web>
  FIREBASE_STORAGE_BUCKET=<bucket, ex.: meu-projeto.appspot.com>   (opcional)
  GEMINI_API_KEY=<chave da API Gemini>                             (opcional)
"""


class ConfigurationError(Exception):
    """Raised when required backend configuration is missing."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing configuration: {', '.join(missing)}")


@lru_cache
def get_cache_dir() -> Path:
    """Get the cache directory (.cache/ in workspace root).

    Looks for project root by finding .git or pyproject.toml,
    then returns .cache/ within that root.
    """
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / ".git").exists() or (parent / "pyproject.toml").exists():
            cache_dir = parent / ".cache"
            cache_dir.mkdir(exist_ok=True)
            return cache_dir
    # Fallback to current working directory
    cache_dir = Path.cwd() / ".cache"
    cache_dir.mkdir(exist_ok=True)
    return cache_dir


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Firebase project (document database, auth, storage)
    firebase_project_id: str | None = None
    firebase_api_key: str | None = None
    firebase_storage_bucket: str | None = None
    firestore_database: str = "(default)"

    # Pre-issued credentials for non-interactive use (CLI, scripts)
    rebanho_user_id: str | None = None
    rebanho_id_token: str | None = None

    # Gemini generative AI
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"

    # Seconds an upload may sit at 0 bytes before it is considered stalled
    upload_stall_timeout: float = 15.0

    # HTTP timeout for backend and AI requests (seconds)
    request_timeout: float = 30.0

    # Display units for CLI output ("metric" = kg/ha, "imperial" = lb/acre)
    # Note: documents always store metric values
    display_units: Literal["metric", "imperial"] = "metric"


settings = Settings()


def require_backend_config() -> None:
    """Check that the document database can be reached.

    Raises:
        ConfigurationError: If the project id or API key is not configured
    """
    missing = []
    if not settings.firebase_project_id:
        missing.append("FIREBASE_PROJECT_ID")
    if not settings.firebase_api_key:
        missing.append("FIREBASE_API_KEY")
    if missing:
        raise ConfigurationError(missing)
