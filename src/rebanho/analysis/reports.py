"""Herd reports: sanitary activity and dam performance.

Aggregation is plain summarization over a herd snapshot. The narrative
recommendations come either from fixed templates or, when requested, from
the AI service.
"""

from collections import Counter, defaultdict
from datetime import date
from typing import TypedDict

from rebanho.ai import gemini
from rebanho.data.models import Animal

MONTHS_PT = ["jan", "fev", "mar", "abr", "mai", "jun", "jul", "ago", "set", "out", "nov", "dez"]

TOP_TREATED_LIMIT = 20
TOP_MONTHLY_MEDICATIONS = 5

NO_SANITARY_ACTIVITY = (
    "Nenhuma atividade sanitária registrada no período selecionado. O rebanho parece saudável."
)
NO_PROGENY_DATA = (
    "Não há dados suficientes sobre a progênie para gerar recomendações reprodutivas. "
    "Continue registrando os nascimentos e pesos para obter insights valiosos."
)


class ChartDataPoint(TypedDict):
    label: str
    value: float


class TopTreatedAnimal(TypedDict):
    animal_id: str
    brinco: str
    nome: str
    treatment_count: int


class MedicationUsageDetail(TypedDict):
    label: str
    value: int
    monthly_usage: list[ChartDataPoint]


class MonthlyMedicationUsage(TypedDict):
    label: str
    value: int
    medications: list[ChartDataPoint]


class SanitaryReport(TypedDict):
    top_treated_animals: list[TopTreatedAnimal]
    medication_usage: list[MedicationUsageDetail]
    seasonal_analysis: list[MonthlyMedicationUsage]
    reason_analysis: list[ChartDataPoint]
    recommendations: str


class DamPerformance(TypedDict):
    dam_id: str
    dam_brinco: str
    dam_nome: str | None
    offspring_count: int
    avg_birth_weight: float | None
    avg_weaning_weight: float | None
    avg_yearling_weight: float | None


class ReproductiveReport(TypedDict):
    performance_data: list[DamPerformance]
    recommendations: str


class ComprehensiveReport(TypedDict):
    sanitary: SanitaryReport
    reproductive: ReproductiveReport


def month_key(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def month_label(key: str) -> str:
    """Format a YYYY-MM key as a short Portuguese label, e.g. "ago/2024"."""
    year, month = key.split("-")
    return f"{MONTHS_PT[int(month) - 1]}/{year}"


def _ranked(counts: Counter) -> list[ChartDataPoint]:
    # Counter.most_common keeps first-seen order on ties
    return [{"label": label, "value": value} for label, value in counts.most_common()]


# =============================================================================
# Sanitary
# =============================================================================


def build_sanitary_report(animals: list[Animal], start: date, end: date) -> SanitaryReport:
    """Summarize medication administrations between start and end (inclusive)."""
    treated = []
    for animal in animals:
        meds = [m for m in animal.historico_sanitario if start <= m.data_aplicacao <= end]
        if meds:
            treated.append((animal, meds))

    if not treated:
        return {
            "top_treated_animals": [],
            "medication_usage": [],
            "seasonal_analysis": [],
            "reason_analysis": [],
            "recommendations": NO_SANITARY_ACTIVITY,
        }

    top_treated: list[TopTreatedAnimal] = sorted(
        (
            {
                "animal_id": animal.id,
                "brinco": animal.brinco,
                "nome": animal.nome or "N/A",
                "treatment_count": len(meds),
            }
            for animal, meds in treated
        ),
        key=lambda a: a["treatment_count"],
        reverse=True,
    )[:TOP_TREATED_LIMIT]

    med_totals: Counter = Counter()
    med_months: dict[str, Counter] = defaultdict(Counter)
    month_totals: Counter = Counter()
    month_meds: dict[str, Counter] = defaultdict(Counter)
    reasons: Counter = Counter()

    for _, meds in treated:
        for med in meds:
            key = month_key(med.data_aplicacao)
            med_totals[med.medicamento] += 1
            med_months[med.medicamento][key] += 1
            month_totals[key] += 1
            month_meds[key][med.medicamento] += 1
            reasons[med.motivo] += 1

    medication_usage: list[MedicationUsageDetail] = [
        {
            "label": name,
            "value": total,
            "monthly_usage": [
                {"label": month_label(key), "value": count} for key, count in sorted(med_months[name].items())
            ],
        }
        for name, total in med_totals.most_common()
    ]

    seasonal_analysis: list[MonthlyMedicationUsage] = [
        {
            "label": month_label(key),
            "value": month_totals[key],
            "medications": _ranked(month_meds[key])[:TOP_MONTHLY_MEDICATIONS],
        }
        for key in sorted(month_totals)
    ]

    reason_analysis = _ranked(reasons)

    recommendations = (
        "Com base nos dados do período, observamos uma concentração de tratamentos por "
        f"**{reason_analysis[0]['label'] or 'motivos diversos'}**. "
        f"O medicamento mais utilizado foi **{medication_usage[0]['label']}**. "
        f"Recomenda-se atenção especial ao animal com brinco **{top_treated[0]['brinco']}**, "
        "que recebeu o maior número de tratamentos. Avalie a possibilidade de ajustar os protocolos "
        "preventivos durante os meses de maior incidência para otimizar a saúde do rebanho."
    )

    return {
        "top_treated_animals": top_treated,
        "medication_usage": medication_usage,
        "seasonal_analysis": seasonal_analysis,
        "reason_analysis": reason_analysis,
        "recommendations": recommendations,
    }


# =============================================================================
# Reproductive
# =============================================================================


def _average(values: list[float | None]) -> float | None:
    present = [v for v in values if v is not None and v > 0]
    if not present:
        return None
    return sum(present) / len(present)


def build_reproductive_report(animals: list[Animal]) -> ReproductiveReport:
    """Rank dams by offspring count, then by average weaning weight."""
    performance: list[DamPerformance] = []
    for dam in animals:
        if not dam.is_female or not dam.historico_progenie:
            continue
        progeny = dam.historico_progenie
        performance.append(
            {
                "dam_id": dam.id,
                "dam_brinco": dam.brinco,
                "dam_nome": dam.nome,
                "offspring_count": len(progeny),
                "avg_birth_weight": _average([p.birth_weight_kg for p in progeny]),
                "avg_weaning_weight": _average([p.weaning_weight_kg for p in progeny]),
                "avg_yearling_weight": _average([p.yearling_weight_kg for p in progeny]),
            }
        )

    performance.sort(key=lambda d: (d["offspring_count"], d["avg_weaning_weight"] or 0), reverse=True)

    if not performance:
        return {"performance_data": [], "recommendations": NO_PROGENY_DATA}

    top = performance[0]
    weaning = f"{top['avg_weaning_weight']:.2f}" if top["avg_weaning_weight"] is not None else "N/A"
    dam_label = top["dam_nome"] or f"de brinco {top['dam_brinco']}"
    recommendations = (
        f"A fêmea **{dam_label}** demonstra ser a matriz mais "
        f"produtiva, com **{top['offspring_count']} crias** registradas e uma média de peso ao desmame de "
        f"**{weaning} kg**. Considere utilizar a genética desta matriz como base para futuras seleções. "
        "Monitore fêmeas com poucas crias ou baixo desempenho de desmame para decisões de descarte."
    )
    return {"performance_data": performance, "recommendations": recommendations}


# =============================================================================
# Combined
# =============================================================================


async def generate_comprehensive_report(
    animals: list[Animal],
    start: date,
    end: date,
    use_ai: bool = False,
) -> ComprehensiveReport:
    """Build both reports for a date range.

    Args:
        animals: Herd snapshot
        start: First day of the period
        end: Last day of the period
        use_ai: Replace the template recommendations with AI-written ones

    Raises:
        gemini.AIClientError: If use_ai is set and the AI client is unavailable
        gemini.AIServiceError: If use_ai is set and the AI request fails
    """
    sanitary = build_sanitary_report(animals, start, end)
    reproductive = build_reproductive_report(animals)

    if use_ai and (sanitary["top_treated_animals"] or reproductive["performance_data"]):
        narrative = await gemini.generate_recommendations(
            {k: v for k, v in sanitary.items() if k != "recommendations"},
            {k: v for k, v in reproductive.items() if k != "recommendations"},
        )
        if sanitary["top_treated_animals"] and narrative["sanitary"]:
            sanitary["recommendations"] = narrative["sanitary"]
        if reproductive["performance_data"] and narrative["reproductive"]:
            reproductive["recommendations"] = narrative["reproductive"]

    return {"sanitary": sanitary, "reproductive": reproductive}
