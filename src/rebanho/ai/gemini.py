"""Gemini calls: voice transcript structuring and report narrative.

The client is created lazily on first use, so a missing API key only fails
the AI features instead of the whole application.

Errors:
- AIClientError: the client could not be created (propagated unchanged)
- AIServiceError: the request or the response parsing failed
"""

import json
import logging
from datetime import date

import httpx

from rebanho.core.config import settings
from rebanho.data.models import Raca, Sexo

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"


class AIClientError(Exception):
    """Raised when the AI client cannot be constructed."""

    pass


class AIServiceError(Exception):
    """Raised when an AI request fails or returns unusable data."""

    pass


# =============================================================================
# Response schemas
# =============================================================================

MEDICATION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "medicamento": {"type": "STRING", "description": "Nome do medicamento"},
        "dose": {"type": "NUMBER", "description": "Dosagem numérica"},
        "unidade": {
            "type": "STRING",
            "description": "Unidade da dose (ml, mg, dose)",
            "enum": ["ml", "mg", "dose"],
        },
        "motivo": {"type": "STRING", "description": "Motivo da aplicação"},
    },
}

ANIMAL_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "brinco": {"type": "STRING", "description": "Número do brinco do animal"},
        "nome": {"type": "STRING", "description": "Nome do animal"},
        "raca": {"type": "STRING", "description": "Raça do animal", "enum": [r.value for r in Raca]},
        "sexo": {"type": "STRING", "description": "Sexo do animal", "enum": [s.value for s in Sexo]},
        "dataNascimento": {"type": "STRING", "description": "Data de nascimento no formato AAAA-MM-DD"},
        "pesoKg": {"type": "NUMBER", "description": "Peso do animal em quilogramas"},
        "maeNome": {"type": "STRING", "description": "Nome ou brinco da mãe"},
        "paiNome": {"type": "STRING", "description": "Nome ou brinco do pai"},
    },
}

RECOMMENDATIONS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "sanitary": {"type": "STRING", "description": "Recomendações sanitárias para o rebanho"},
        "reproductive": {"type": "STRING", "description": "Recomendações reprodutivas para o rebanho"},
    },
    "required": ["sanitary", "reproductive"],
}


# =============================================================================
# Client
# =============================================================================


class GeminiClient:
    """Minimal JSON-mode client for the generateContent endpoint."""

    def __init__(self, api_key: str, model: str):
        self.api_key = api_key
        self.model = model

    async def generate_json(self, prompt: str, schema: dict) -> dict:
        """Send a prompt and parse the structured JSON reply."""
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{GEMINI_URL}/models/{self.model}:generateContent",
                params={"key": self.api_key},
                json=payload,
                timeout=settings.request_timeout,
            )
            response.raise_for_status()

        candidates = response.json().get("candidates") or []
        if not candidates:
            raise ValueError("No candidates in response")
        text = candidates[0]["content"]["parts"][0]["text"].strip()
        result = json.loads(text)
        if not isinstance(result, dict):
            raise ValueError(f"Expected a JSON object, got {type(result).__name__}")
        return result


_client: GeminiClient | None = None


def get_ai_client() -> GeminiClient:
    """Get the Gemini client (lazily initialized)."""
    global _client
    if _client is None:
        if not settings.gemini_api_key:
            logger.error("Gemini client unavailable: GEMINI_API_KEY is not set")
            raise AIClientError(
                "Não foi possível conectar à IA do Gemini. "
                "Verifique se a chave de API está configurada corretamente no ambiente de execução."
            )
        _client = GeminiClient(settings.gemini_api_key, settings.gemini_model)
    return _client


def reset_ai_client() -> None:
    """Forget the cached client (after a settings change)."""
    global _client
    _client = None


async def _structured_call(prompt: str, schema: dict, failure_message: str) -> dict:
    ai = get_ai_client()
    try:
        return await ai.generate_json(prompt, schema)
    except (httpx.HTTPError, ValueError, KeyError, IndexError) as e:
        logger.error("Gemini request failed: %s", e)
        raise AIServiceError(failure_message) from e


# =============================================================================
# Operations
# =============================================================================


async def structure_medication_text(text: str) -> dict:
    """Extract medication administration fields from a free-form transcript.

    Returns:
        Dict with any of: medicamento, dose, unidade, motivo
    """
    logger.info("Structuring medication text: %s", text)
    return await _structured_call(
        f'Extraia as informações de medicação do seguinte texto: "{text}"',
        MEDICATION_SCHEMA,
        "A IA não conseguiu processar o comando de medicação.",
    )


async def structure_animal_text(text: str) -> dict:
    """Extract new-animal registration fields from a free-form transcript.

    Returns:
        Dict with any of: brinco, nome, raca, sexo, dataNascimento (as a date),
        pesoKg, maeNome, paiNome
    """
    logger.info("Structuring animal registration text: %s", text)
    failure = "A IA não conseguiu processar o comando de registro de animal."
    data = await _structured_call(
        f'Extraia as informações de registro do animal do seguinte texto: "{text}"',
        ANIMAL_SCHEMA,
        failure,
    )
    birth = data.get("dataNascimento")
    if isinstance(birth, str) and birth:
        try:
            data["dataNascimento"] = date.fromisoformat(birth)
        except ValueError as e:
            raise AIServiceError(failure) from e
    return data


async def generate_recommendations(sanitary: dict, reproductive: dict) -> dict[str, str]:
    """Ask for narrative recommendations on aggregated report data.

    Args:
        sanitary: Sanitary report data (JSON-serializable)
        reproductive: Reproductive report data (JSON-serializable)

    Returns:
        Dict with "sanitary" and "reproductive" recommendation texts
    """
    prompt = (
        "Você é um consultor de pecuária de corte. Com base nos dados agregados abaixo, "
        "escreva recomendações práticas e objetivas em português, uma para a parte sanitária "
        "e outra para a parte reprodutiva do rebanho. Destaque nomes e números em **negrito**.\n\n"
        f"Dados sanitários:\n{json.dumps(sanitary, ensure_ascii=False, default=str)}\n\n"
        f"Dados reprodutivos:\n{json.dumps(reproductive, ensure_ascii=False, default=str)}"
    )
    result = await _structured_call(prompt, RECOMMENDATIONS_SCHEMA, "A IA não conseguiu gerar as recomendações do relatório.")
    return {"sanitary": str(result.get("sanitary", "")), "reproductive": str(result.get("reproductive", ""))}
