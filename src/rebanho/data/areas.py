"""
Management area (pasture) occupancy.

Aggregates the active animals assigned to each area: head count, total live
weight and stocking density (kg of live weight per hectare).
"""

from typing import TypedDict

from rebanho.data.models import Animal, AnimalStatus, ManagementArea, current_weight


class AreaOccupancy(TypedDict):
    """Aggregated occupancy for a management area."""

    area_id: str
    area_name: str
    area_ha: float
    animal_count: int
    total_weight_kg: float
    density_kg_ha: float
    animals: list[str]  # Tags for reference


def _active_in(animals: list[Animal], area_id: str) -> list[Animal]:
    return [a for a in animals if a.management_area_id == area_id and a.status == AnimalStatus.ATIVO]


def stocking_density(animals: list[Animal], area: ManagementArea) -> float:
    """
    Live weight per hectare for an area.

    Args:
        animals: Loaded herd (only active animals assigned to the area count)
        area: The management area

    Returns:
        kg/ha, or 0 when the area has no size
    """
    if area.area_ha <= 0:
        return 0.0
    total = sum(current_weight(a) for a in _active_in(animals, area.id))
    return total / area.area_ha


def summarize_areas(animals: list[Animal], areas: list[ManagementArea]) -> dict[str, AreaOccupancy]:
    """
    Occupancy of every management area.

    Returns:
        Dict of area_id -> AreaOccupancy, in the order of ``areas``
    """
    result: dict[str, AreaOccupancy] = {}
    for area in areas:
        present = _active_in(animals, area.id)
        total = sum(current_weight(a) for a in present)
        result[area.id] = AreaOccupancy(
            area_id=area.id,
            area_name=area.name,
            area_ha=round(area.area_ha, 2),
            animal_count=len(present),
            total_weight_kg=round(total, 1),
            density_kg_ha=round(total / area.area_ha, 1) if area.area_ha > 0 else 0.0,
            animals=[a.brinco for a in present],
        )
    return result


def unassigned_animals(animals: list[Animal], areas: list[ManagementArea]) -> list[Animal]:
    """Active animals not in any known area (including dangling area references)."""
    known = {area.id for area in areas}
    return [a for a in animals if a.status == AnimalStatus.ATIVO and a.management_area_id not in known]
