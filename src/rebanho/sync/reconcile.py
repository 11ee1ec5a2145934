"""Optimistic state reconciliation.

Every mutation is a pure function ``(state, edit) -> (new_state, writes)``:
the new local state to show immediately, plus the document writes that must
be committed together to make the backend agree with it.

The dam/offspring link is denormalized: a dam carries a progeny stub per
offspring (``historicoProgenie``), and each offspring names its dam with a
free-text ``maeNome``. Dams are resolved by ``maeId`` when it points at a
loaded female, otherwise by case-insensitive tag match (``brinco``) against
loaded females. A tag match that is missing or ambiguous resolves to no dam,
and no propagation happens.
"""

from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple

from rebanho.core.writes import DeleteWrite, SetWrite, UpdateWrite, Write
from rebanho.data.livestock import normalize_tag, resolve_mother
from rebanho.data.models import (
    Animal,
    CalendarEvent,
    Document,
    ManagementArea,
    ProgenyRecord,
    Task,
    WeighingType,
    WeightEntry,
    latest_weighing,
)

# Backend collection paths
ANIMALS = "animals"
CALENDAR = "calendar"
TASKS = "tasks"
AREAS = "areas"

# Backend collection -> (state attribute, loading key, record type)
COLLECTIONS: dict[str, tuple[str, str, type[Document]]] = {
    ANIMALS: ("animals", "animals", Animal),
    CALENDAR: ("calendar_events", "calendar", CalendarEvent),
    TASKS: ("tasks", "tasks", Task),
    AREAS: ("management_areas", "areas", ManagementArea),
}

# Fields whose change can move a progeny stub between dams
LINEAGE_FIELDS = {"mae_nome", "mae_id"}

# Aliases and attribute names both map to the attribute name
_ANIMAL_FIELD_NAMES = {
    **{name: name for name in Animal.model_fields},
    **{info.alias: name for name, info in Animal.model_fields.items() if info.alias},
}


class AnimalNotFoundError(KeyError):
    """Raised when an edit targets an animal that is not loaded."""

    pass


def _initial_loading() -> dict[str, bool]:
    return {loading_key: True for _, loading_key, _ in COLLECTIONS.values()}


@dataclass(frozen=True)
class HerdState:
    """All loaded collections for one user, plus load and error status."""

    animals: list[Animal] = field(default_factory=list)
    calendar_events: list[CalendarEvent] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    management_areas: list[ManagementArea] = field(default_factory=list)
    loading: dict[str, bool] = field(default_factory=_initial_loading)
    error: str | None = None

    @property
    def is_loading(self) -> bool:
        return any(self.loading.values())

    def records(self, collection: str) -> list:
        return getattr(self, COLLECTIONS[collection][0])

    def find(self, collection: str, doc_id: str) -> Any | None:
        return next((r for r in self.records(collection) if r.id == doc_id), None)

    def get_animal(self, animal_id: str) -> Animal:
        animal = self.find(ANIMALS, animal_id)
        if animal is None:
            raise AnimalNotFoundError(animal_id)
        return animal


class Reconciliation(NamedTuple):
    state: HerdState
    writes: list[Write]


# =============================================================================
# State helpers
# =============================================================================


def _with_records(state: HerdState, collection: str, records: list) -> HerdState:
    return replace(state, **{COLLECTIONS[collection][0]: records})


def _put(state: HerdState, collection: str, record: Any) -> HerdState:
    """Replace a record by id, appending it when not present."""
    records = state.records(collection)
    if any(r.id == record.id for r in records):
        records = [record if r.id == record.id else r for r in records]
    else:
        records = [*records, record]
    return _with_records(state, collection, records)


def _remove(state: HerdState, collection: str, doc_id: str) -> HerdState:
    return _with_records(state, collection, [r for r in state.records(collection) if r.id != doc_id])


def apply_snapshot(state: HerdState, collection: str, records: list) -> HerdState:
    """Replace a whole collection with a fresh snapshot (last snapshot wins)."""
    state = _with_records(state, collection, list(records))
    loading_key = COLLECTIONS[collection][1]
    return replace(state, loading={**state.loading, loading_key: False})


def set_loading(state: HerdState, collection: str, status: bool) -> HerdState:
    loading_key = COLLECTIONS[collection][1]
    return replace(state, loading={**state.loading, loading_key: status})


def set_error(state: HerdState, message: str | None) -> HerdState:
    return replace(state, error=message)


def restore_documents(
    current: HerdState,
    previous: HerdState,
    touched: set[tuple[str, str]],
) -> HerdState:
    """Put the touched documents back to their values in ``previous``.

    Documents that did not exist in ``previous`` are removed. Everything
    else in ``current`` is left as is.
    """
    state = current
    for collection, doc_id in touched:
        before = previous.find(collection, doc_id)
        if before is None:
            state = _remove(state, collection, doc_id)
        else:
            state = _put(state, collection, before)
    return state


# =============================================================================
# Lineage
# =============================================================================


def progeny_stub_id(animal_id: str) -> str:
    return f"prog_{animal_id}"


def _is_stub_for(stub: ProgenyRecord, child: Animal) -> bool:
    return stub.id == progeny_stub_id(child.id) or stub.offspring_brinco == child.brinco


def _progeny_data(progeny: list[ProgenyRecord]) -> dict:
    return {"historicoProgenie": [p.model_dump(by_alias=True, exclude_none=True) for p in progeny]}


def _stored_fields(animal: Animal, names: set[str]) -> tuple[dict, tuple[str, ...]]:
    """Stored representation of some fields: (data, fields to delete)."""
    data = animal.model_dump(by_alias=True, exclude_none=True, include=names)
    deletes = tuple(
        sorted(Animal.model_fields[name].alias or name for name in names if getattr(animal, name) is None)
    )
    return data, deletes


# =============================================================================
# Animals
# =============================================================================


def reconcile_add(state: HerdState, animal: Animal, *, owner_id: str) -> Reconciliation:
    """Insert a new animal and link it to its dam."""
    if animal.peso_kg > 0 and not animal.historico_pesagens:
        initial = WeightEntry(
            id=f"initial-{animal.id}",
            date=animal.data_nascimento,
            weight_kg=animal.peso_kg,
            type=WeighingType.NONE,
        )
        animal = animal.model_copy(update={"historico_pesagens": [initial]})

    writes: list[Write] = []
    dam = resolve_mother(state.animals, animal)
    if dam is not None:
        animal = animal.model_copy(update={"mae_id": dam.id})
        if not any(_is_stub_for(p, animal) for p in dam.historico_progenie):
            stub = ProgenyRecord(
                id=progeny_stub_id(animal.id),
                offspring_brinco=animal.brinco,
                birth_weight_kg=animal.peso_kg if animal.peso_kg > 0 else None,
            )
            progeny = [*dam.historico_progenie, stub]
            state = _put(state, ANIMALS, dam.model_copy(update={"historico_progenie": progeny}))
            writes.append(UpdateWrite(ANIMALS, dam.id, _progeny_data(progeny)))

    state = _put(state, ANIMALS, animal)
    writes.insert(0, SetWrite(ANIMALS, animal.id, {**animal.to_document(), "userId": owner_id}))
    return Reconciliation(state, writes)


def _normalize_changes(changes: dict) -> dict:
    normalized = {}
    for key, value in changes.items():
        name = _ANIMAL_FIELD_NAMES.get(key)
        if name is None:
            raise ValueError(f"Unknown animal field: {key}")
        if name != "id":
            normalized[name] = value
    return normalized


def reconcile_update(state: HerdState, animal_id: str, changes: dict) -> Reconciliation:
    """Apply an edit to an animal and propagate it to the affected dams.

    Args:
        state: Current local state
        animal_id: Id of the edited animal
        changes: Changed fields, by attribute name or stored name

    Returns:
        The new state and the writes: one update for the animal plus at most
        one update per affected dam

    Raises:
        AnimalNotFoundError: If the animal is not loaded
    """
    old = state.get_animal(animal_id)
    changes = _normalize_changes(changes)

    # A new free-text reference invalidates the previous id link
    if "mae_nome" in changes and "mae_id" not in changes:
        if normalize_tag(changes["mae_nome"]) != normalize_tag(old.mae_nome):
            changes["mae_id"] = None

    new = Animal.model_validate({**old.model_dump(), **changes})
    changed = set(changes)

    if "historico_pesagens" in changed:
        latest = latest_weighing(new.historico_pesagens)
        if latest is not None and latest.weight_kg != new.peso_kg:
            new = new.model_copy(update={"peso_kg": latest.weight_kg})
            changed.add("peso_kg")

    # Other animals as they will be after this edit
    others = [a for a in state.animals if a.id != animal_id]
    old_dam = resolve_mother(others, old)
    new_dam = resolve_mother(others, new)
    if changed & LINEAGE_FIELDS:
        mae_id = new_dam.id if new_dam else None
        if mae_id != new.mae_id:
            new = new.model_copy(update={"mae_id": mae_id})
            changed.add("mae_id")

    dams: dict[str, list[ProgenyRecord]] = {}

    def progeny_of(dam: Animal) -> list[ProgenyRecord]:
        return dams.setdefault(dam.id, list(dam.historico_progenie))

    # Mother changed: move the stub
    old_dam_id = old_dam.id if old_dam else None
    new_dam_id = new_dam.id if new_dam else None
    if changed & LINEAGE_FIELDS and old_dam_id != new_dam_id:
        if old_dam is not None:
            dams[old_dam.id] = [p for p in progeny_of(old_dam) if not _is_stub_for(p, old)]
        if new_dam is not None:
            progeny = progeny_of(new_dam)
            if not any(_is_stub_for(p, new) or _is_stub_for(p, old) for p in progeny):
                progeny.append(ProgenyRecord(id=progeny_stub_id(new.id), offspring_brinco=new.brinco))

    # Tag renamed: keep the stub pointing at the animal
    if new_dam is not None and new.brinco != old.brinco:
        progeny = progeny_of(new_dam)
        for i, stub in enumerate(progeny):
            if _is_stub_for(stub, old) and stub.offspring_brinco != new.brinco:
                progeny[i] = stub.model_copy(update={"offspring_brinco": new.brinco})

    # Weaning and yearling weights onto the dam's stub
    if "historico_pesagens" in changed and new_dam is not None:
        weaning = latest_weighing(new.historico_pesagens, WeighingType.WEANING)
        yearling = latest_weighing(new.historico_pesagens, WeighingType.YEARLING)
        if weaning or yearling:
            progeny = progeny_of(new_dam)
            index = next((i for i, p in enumerate(progeny) if _is_stub_for(p, new)), None)
            stub = progeny[index] if index is not None else ProgenyRecord(
                id=progeny_stub_id(new.id), offspring_brinco=new.brinco
            )
            update = {}
            if weaning and stub.weaning_weight_kg != weaning.weight_kg:
                update["weaning_weight_kg"] = weaning.weight_kg
            if yearling and stub.yearling_weight_kg != yearling.weight_kg:
                update["yearling_weight_kg"] = yearling.weight_kg
            if update:
                stub = stub.model_copy(update=update)
                if index is None:
                    progeny.append(stub)
                else:
                    progeny[index] = stub

    data, deletes = _stored_fields(new, changed)
    writes: list[Write] = [UpdateWrite(ANIMALS, new.id, data, deletes)]
    state = _put(state, ANIMALS, new)

    for dam_id, progeny in dams.items():
        dam = state.get_animal(dam_id)
        if progeny == dam.historico_progenie:
            continue
        state = _put(state, ANIMALS, dam.model_copy(update={"historico_progenie": progeny}))
        writes.append(UpdateWrite(ANIMALS, dam_id, _progeny_data(progeny)))

    return Reconciliation(state, writes)


def reconcile_delete(state: HerdState, animal_id: str) -> Reconciliation:
    """Remove an animal and strip its stub from its dam."""
    animal = state.get_animal(animal_id)
    state = _remove(state, ANIMALS, animal_id)
    writes: list[Write] = [DeleteWrite(ANIMALS, animal_id)]

    dam = resolve_mother(state.animals, animal)
    if dam is not None:
        progeny = [p for p in dam.historico_progenie if not _is_stub_for(p, animal)]
        if len(progeny) != len(dam.historico_progenie):
            state = _put(state, ANIMALS, dam.model_copy(update={"historico_progenie": progeny}))
            writes.append(UpdateWrite(ANIMALS, dam.id, _progeny_data(progeny)))

    return Reconciliation(state, writes)


# =============================================================================
# Calendar events, tasks, areas
# =============================================================================


def reconcile_upsert(state: HerdState, collection: str, record: Document, *, owner_id: str) -> Reconciliation:
    """Create a record, or update it when already loaded."""
    existing = state.find(collection, record.id)
    if existing is None:
        write: Write = SetWrite(collection, record.id, {**record.to_document(), "userId": owner_id})
    else:
        deletes = tuple(
            sorted(
                info.alias or name
                for name, info in type(record).model_fields.items()
                if getattr(record, name) is None
            )
        )
        write = UpdateWrite(collection, record.id, record.to_document(), deletes)
    return Reconciliation(_put(state, collection, record), [write])


def reconcile_remove(state: HerdState, collection: str, doc_id: str) -> Reconciliation:
    """Delete a single record."""
    return Reconciliation(_remove(state, collection, doc_id), [DeleteWrite(collection, doc_id)])


def reconcile_area_delete(state: HerdState, area_id: str) -> Reconciliation:
    """Delete an area and unassign every animal in it."""
    writes: list[Write] = []
    for animal in state.animals:
        if animal.management_area_id == area_id:
            state = _put(state, ANIMALS, animal.model_copy(update={"management_area_id": None}))
            writes.append(UpdateWrite(ANIMALS, animal.id, {}, ("managementAreaId",)))
    state = _remove(state, AREAS, area_id)
    writes.append(DeleteWrite(AREAS, area_id))
    return Reconciliation(state, writes)


def reconcile_area_assignment(state: HerdState, area_id: str, animal_ids: list[str]) -> Reconciliation:
    """Make ``animal_ids`` exactly the set of animals assigned to an area."""
    wanted = set(animal_ids)
    writes: list[Write] = []
    for animal in state.animals:
        if animal.id in wanted and animal.management_area_id != area_id:
            state = _put(state, ANIMALS, animal.model_copy(update={"management_area_id": area_id}))
            writes.append(UpdateWrite(ANIMALS, animal.id, {"managementAreaId": area_id}))
        elif animal.id not in wanted and animal.management_area_id == area_id:
            state = _put(state, ANIMALS, animal.model_copy(update={"management_area_id": None}))
            writes.append(UpdateWrite(ANIMALS, animal.id, {}, ("managementAreaId",)))
    return Reconciliation(state, writes)
