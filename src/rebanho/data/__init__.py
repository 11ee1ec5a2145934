"""Data modules - records, lineage, management areas, export."""

from rebanho.data import livestock
from rebanho.data.areas import stocking_density, summarize_areas
from rebanho.data.export import export_animals_csv
from rebanho.data.livestock import (
    filter_animals,
    find_animal,
    format_lineage_tree,
    get_animal_lineage,
    get_offspring,
    resolve_mother,
    summarize_herd,
)
from rebanho.data.models import Animal, CalendarEvent, ManagementArea, Task

__all__ = [
    "livestock",
    "Animal",
    "CalendarEvent",
    "ManagementArea",
    "Task",
    "filter_animals",
    "find_animal",
    "resolve_mother",
    "get_offspring",
    "get_animal_lineage",
    "format_lineage_tree",
    "summarize_herd",
    "stocking_density",
    "summarize_areas",
    "export_animals_csv",
]
