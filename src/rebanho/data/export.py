"""
CSV export of the herd.

The file opens correctly in spreadsheet tools that expect a BOM for UTF-8,
quotes only the fields that need it, and uses Portuguese headers.
"""

import csv
import io
import logging
from datetime import date
from pathlib import Path

from rebanho.data.models import Animal, current_weight

logger = logging.getLogger(__name__)

BOM = "\ufeff"

CSV_HEADERS = [
    "Brinco",
    "Nome",
    "Raça",
    "Sexo",
    "Data de Nascimento",
    "Peso Atual (kg)",
    "Status",
    "Pai",
    "Mãe",
    "Nº Medicações",
    "Nº Pesagens",
    "Nº Prenhez",
    "Nº Abortos",
    "Nº Crias",
]


def format_date(d: date) -> str:
    return d.strftime("%d/%m/%Y")


def animal_rows(animals: list[Animal]) -> list[list[str]]:
    """One row per animal, aligned with CSV_HEADERS."""
    rows = []
    for a in animals:
        rows.append(
            [
                a.brinco,
                a.nome or "",
                a.raca.value,
                a.sexo.value,
                format_date(a.data_nascimento),
                f"{current_weight(a):.10g}",
                a.status.value,
                a.pai_nome or "",
                a.mae_nome or "",
                str(len(a.historico_sanitario)),
                str(len(a.historico_pesagens)),
                str(len(a.historico_prenhez)),
                str(len(a.historico_aborto)),
                str(len(a.historico_progenie)),
            ]
        )
    return rows


def to_csv_text(rows: list[list[str]], headers: list[str] = CSV_HEADERS) -> str:
    """Render rows as CSV text with a leading BOM and CRLF line endings."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return BOM + buffer.getvalue()


def export_filename(today: date | None = None) -> str:
    return f"relatorio_rebanho_{(today or date.today()).isoformat()}.csv"


def export_animals_csv(animals: list[Animal], output_dir: Path, today: date | None = None) -> Path:
    """
    Write the selected animals to a timestamped CSV file.

    Args:
        animals: Animals to export
        output_dir: Directory for the file (created if missing)
        today: Date used in the file name (default: today)

    Returns:
        Path of the written file

    Raises:
        ValueError: If there are no animals to export
    """
    if not animals:
        raise ValueError("Nenhum animal selecionado para exportar.")

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / export_filename(today)
    # newline="" keeps the CRLF terminators as written
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(to_csv_text(animal_rows(animals)))

    logger.info("Exported %d animals to %s", len(animals), path)
    return path
