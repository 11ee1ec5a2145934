"""Herd data model.

Documents are validated here, at the data-access boundary. Stored field
names are the camelCase names used by the documents (``brinco``,
``maeNome``, ``historicoPesagens``...) and are accepted as aliases; Python
code uses the snake_case attribute names.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PLACEHOLDER_PHOTO_URL = (
    "https://storage.googleapis.com/aistudio-marketplace/gallery/cattle_management/cow_placeholder.png"
)


def _to_date(value: Any) -> Any:
    """Backend timestamps arrive as datetimes; date-only fields keep the UTC day."""
    if isinstance(value, datetime):
        if value.tzinfo:
            value = value.astimezone(UTC)
        return value.date()
    return value


DateField = Annotated[date, BeforeValidator(_to_date)]


# =============================================================================
# Enums
# =============================================================================


class Raca(str, Enum):
    HEREFORD = "Hereford"
    BRAFORD = "Braford"
    HEREFORD_PO = "Hereford PO"
    OUTROS = "Outros"


class Sexo(str, Enum):
    MACHO = "Macho"
    FEMEA = "Fêmea"


class AnimalStatus(str, Enum):
    ATIVO = "Ativo"
    VENDIDO = "Vendido"
    OBITO = "Óbito"


class WeighingType(str, Enum):
    NONE = "Nenhum"
    WEANING = "Desmame"
    YEARLING = "Sobreano"


class PregnancyType(str, Enum):
    EMBRYO_TRANSFER = "Transferência de Embrião"
    ARTIFICIAL_INSEMINATION = "Inseminação Artificial"
    NATURAL_SERVICE = "Monta Natural"


class CalendarEventType(str, Enum):
    EVENTO = "Evento"
    OBSERVACAO = "Observação"
    COMPROMISSO = "Compromisso"


# =============================================================================
# Base
# =============================================================================


class Document(BaseModel):
    """Base for stored records: camelCase aliases, population by name allowed."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict:
        """Field data as stored, without the id and without unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})


class AppUser(BaseModel):
    uid: str
    display_name: str | None = None
    email: str | None = None
    photo_url: str | None = None


# =============================================================================
# Embedded histories
# =============================================================================


class MedicationAdministration(Document):
    id: str
    medicamento: str
    data_aplicacao: DateField
    dose: float
    unidade: Literal["ml", "mg", "dose"]
    motivo: str = ""
    responsavel: str = ""


class WeightEntry(Document):
    id: str
    date: DateField
    weight_kg: float = Field(ge=0)
    type: WeighingType | None = None


class PregnancyRecord(Document):
    id: str
    date: DateField
    type: PregnancyType
    sire_name: str = ""


class AbortionRecord(Document):
    id: str
    date: DateField


class ProgenyRecord(Document):
    """Progeny stub kept on the dam: one per offspring tag."""

    id: str
    offspring_brinco: str
    birth_weight_kg: float | None = None
    weaning_weight_kg: float | None = None
    yearling_weight_kg: float | None = None


# =============================================================================
# Collections
# =============================================================================


class Animal(Document):
    id: str
    brinco: str
    nome: str | None = None
    raca: Raca
    sexo: Sexo
    peso_kg: float = Field(default=0, ge=0)
    data_nascimento: DateField
    status: AnimalStatus = AnimalStatus.ATIVO
    fotos: list[str] = Field(default_factory=list)
    historico_sanitario: list[MedicationAdministration] = Field(default_factory=list)
    historico_pesagens: list[WeightEntry] = Field(default_factory=list)
    historico_prenhez: list[PregnancyRecord] = Field(default_factory=list)
    historico_aborto: list[AbortionRecord] = Field(default_factory=list)
    historico_progenie: list[ProgenyRecord] = Field(default_factory=list)
    pai_nome: str | None = None
    mae_nome: str | None = None
    mae_id: str | None = None
    mae_raca: Raca | None = None
    management_area_id: str | None = None

    @field_validator(
        "historico_sanitario",
        "historico_pesagens",
        "historico_prenhez",
        "historico_aborto",
        "historico_progenie",
        mode="before",
    )
    @classmethod
    def _default_history(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("fotos", mode="before")
    @classmethod
    def _migrate_photos(cls, value: Any) -> list[str]:
        """Migrate legacy photo shapes to a list of URLs.

        Accepted: a single URL string, a list of URL strings, a list of
        ``{"url": ...}`` objects. Anything else is rejected.
        """
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if not isinstance(value, list):
            raise ValueError(f"fotos must be a string or a list, got {type(value).__name__}")

        urls = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("url")
            if not isinstance(item, str):
                raise ValueError(f"Invalid photo entry: {item!r}")
            if item.strip():
                urls.append(item)
        return urls

    @property
    def is_female(self) -> bool:
        return self.sexo == Sexo.FEMEA

    @property
    def cover_photo(self) -> str:
        return self.fotos[0] if self.fotos else PLACEHOLDER_PHOTO_URL

    @property
    def label(self) -> str:
        """Display name: the animal's name, or its tag."""
        return self.nome or f"brinco {self.brinco}"


class ManagementArea(Document):
    id: str
    name: str
    area_ha: float = Field(ge=0)


class CalendarEvent(Document):
    id: str
    date: DateField
    title: str
    type: CalendarEventType = CalendarEventType.EVENTO
    description: str | None = None


class Task(Document):
    id: str
    description: str
    due_date: DateField | None = None
    is_completed: bool = False


# =============================================================================
# Derived values
# =============================================================================


def latest_weighing(
    history: list[WeightEntry],
    weighing_type: WeighingType | None = None,
) -> WeightEntry | None:
    """Most recent weighing, optionally restricted to one class.

    Ties on date keep the entry recorded last.
    """
    entries = [w for w in history if weighing_type is None or w.type == weighing_type]
    if not entries:
        return None
    return max(reversed(entries), key=lambda w: w.date)


def current_weight(animal: Animal) -> float:
    """Weight of the latest weighing, falling back to the explicitly set value."""
    latest = latest_weighing(animal.historico_pesagens)
    return latest.weight_kg if latest else animal.peso_kg
