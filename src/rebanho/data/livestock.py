"""Livestock helpers over a loaded herd.

Provides:
- Animal lookup by id, tag or name
- Dam resolution (id reference first, then tag match)
- Offspring listing and genealogy trees
- Herd summary statistics
"""

from rebanho.data.models import Animal, AnimalStatus, current_weight


def normalize_tag(tag: str | None) -> str:
    """Tags and names compare trimmed and case-insensitively."""
    return (tag or "").strip().lower()


def find_by_tag(animals: list[Animal], tag: str | None, *, females_only: bool = False) -> Animal | None:
    """Unique animal whose tag matches, or None when absent or ambiguous."""
    wanted = normalize_tag(tag)
    if not wanted:
        return None
    matches = [
        a for a in animals if normalize_tag(a.brinco) == wanted and (a.is_female or not females_only)
    ]
    return matches[0] if len(matches) == 1 else None


def resolve_mother(animals: list[Animal], child: Animal) -> Animal | None:
    """Resolve the dam of ``child`` among loaded animals.

    ``maeId`` wins when it names a loaded female. Otherwise ``maeNome`` is
    matched against the tags of loaded females; no match or more than one
    match resolves to None.
    """
    if child.mae_id:
        dam = next((a for a in animals if a.id == child.mae_id), None)
        if dam is not None and dam.is_female and dam.id != child.id:
            return dam
    dam = find_by_tag(animals, child.mae_nome, females_only=True)
    if dam is not None and dam.id != child.id:
        return dam
    return None


def find_animal(animals: list[Animal], identifier: str) -> Animal:
    """
    Find an animal by id, tag (brinco) or name.

    Args:
        animals: Loaded herd
        identifier: Document id, tag, or name

    Returns:
        The matching animal

    Raises:
        ValueError: If no animal matches or several do
    """
    for animal in animals:
        if animal.id == identifier:
            return animal

    wanted = normalize_tag(identifier)
    for key in ("brinco", "nome"):
        matches = [a for a in animals if normalize_tag(getattr(a, key)) == wanted]
        if len(matches) > 1:
            tags = ", ".join(a.brinco for a in matches)
            raise ValueError(f"Multiple animals match '{identifier}': {tags}")
        if matches:
            return matches[0]

    raise ValueError(f"No animal found matching '{identifier}'")


def filter_animals(
    animals: list[Animal],
    search: str = "",
    medication: str = "",
    reason: str = "",
    status: AnimalStatus | str = "",
) -> list[Animal]:
    """
    Filter the herd the way the animal list does, sorted by tag.

    Args:
        animals: Loaded herd
        search: Case-insensitive substring of the tag or name
        medication: Exact medication name in the sanitary history
        reason: Exact treatment reason in the sanitary history
        status: Exact status

    Empty criteria match everything.
    """
    term = search.strip().lower()
    matched = []
    for animal in animals:
        if term and term not in animal.brinco.lower() and term not in (animal.nome or "").lower():
            continue
        if medication and not any(m.medicamento == medication for m in animal.historico_sanitario):
            continue
        if reason and not any(m.motivo == reason for m in animal.historico_sanitario):
            continue
        if status and animal.status != status:
            continue
        matched.append(animal)
    return sorted(matched, key=lambda a: a.brinco)


def _find_parent(animals: list[Animal], reference: str | None) -> Animal | None:
    """Parent by tag or name; ambiguous references resolve to None."""
    wanted = normalize_tag(reference)
    if not wanted:
        return None
    matches = [a for a in animals if wanted in (normalize_tag(a.brinco), normalize_tag(a.nome))]
    return matches[0] if len(matches) == 1 else None


def get_offspring(animals: list[Animal], parent: Animal) -> list[Animal]:
    """
    Find all offspring of an animal (works for both sires and dams).

    Dams are matched the same way progeny stubs are linked; sires by tag or
    name in ``paiNome``.
    """
    offspring = []
    for a in animals:
        if a.id == parent.id:
            continue
        if parent.is_female:
            dam = resolve_mother(animals, a)
            if dam is not None and dam.id == parent.id:
                offspring.append(a)
        elif normalize_tag(a.pai_nome) in (normalize_tag(parent.brinco), normalize_tag(parent.nome)) and a.pai_nome:
            offspring.append(a)
    return offspring


def get_animal_lineage(animals: list[Animal], animal: Animal, generations: int = 3) -> dict:
    """
    Build the genealogy tree of an animal.

    Parents that are not registered still appear, by the free-text
    reference stored on the child.

    Args:
        animals: Loaded herd
        animal: Root of the tree
        generations: Number of ancestor generations to include

    Returns:
        Nested dict with "sire"/"dam" entries
    """

    def node(a: Animal, depth: int, seen: frozenset[str]) -> dict:
        result = {
            "id": a.id,
            "brinco": a.brinco,
            "nome": a.nome,
            "raca": a.raca.value,
            "birth_year": a.data_nascimento.year,
            "sire": None,
            "dam": None,
        }
        if depth <= 0:
            return result

        dam = resolve_mother(animals, a) or _find_parent(animals, a.mae_nome)
        sire = _find_parent(animals, a.pai_nome)
        for key, parent, reference in (("sire", sire, a.pai_nome), ("dam", dam, a.mae_nome)):
            # Guard against cycles from mistyped references
            if parent is not None and parent.id not in seen:
                result[key] = node(parent, depth - 1, seen | {parent.id})
            elif reference:
                result[key] = {"brinco": reference, "nome": None, "sire": None, "dam": None}
        return result

    return node(animal, generations, frozenset({animal.id}))


def format_lineage_tree(animal: dict, indent: int = 0) -> str:
    """
    Format a lineage dict as a readable tree string.

    Args:
        animal: Lineage dict with nested sire/dam
        indent: Current indentation level

    Returns:
        Formatted tree string
    """
    prefix = "  " * indent
    line = f"{prefix}{animal.get('brinco') or '?'}"
    if animal.get("nome"):
        line += f" - {animal['nome']}"
    if animal.get("raca"):
        line += f" ({animal['raca']})"
    if animal.get("birth_year"):
        line += f" [{animal['birth_year']}]"

    lines = [line]

    if animal.get("sire"):
        lines.append(f"{prefix}  ├─ Pai:")
        lines.append(format_lineage_tree(animal["sire"], indent + 2))
    if animal.get("dam"):
        lines.append(f"{prefix}  └─ Mãe:")
        lines.append(format_lineage_tree(animal["dam"], indent + 2))

    return "\n".join(lines)


def summarize_herd(animals: list[Animal]) -> dict:
    """
    Generate summary statistics for a list of animals.

    Returns:
        Summary dict with counts by breed, sex and status, plus the average
        current weight of active animals
    """
    summary = {
        "total": len(animals),
        "by_breed": {},
        "by_sex": {},
        "by_status": {},
        "avg_weight_kg": None,
    }

    for animal in animals:
        for key, value in (("by_breed", animal.raca), ("by_sex", animal.sexo), ("by_status", animal.status)):
            summary[key][value.value] = summary[key].get(value.value, 0) + 1

    active = [current_weight(a) for a in animals if a.status == AnimalStatus.ATIVO]
    if active:
        summary["avg_weight_kg"] = sum(active) / len(active)

    return summary
