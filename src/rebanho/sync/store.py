"""Optimistic herd store.

``HerdStore`` holds the local state for one signed-in user and keeps it in
step with the document database:

- reads load whole collections; the latest snapshot replaces local state
- every mutation replaces local state before its first suspension point,
  then commits all of its document writes in one atomic batch
- when a commit fails, the documents the mutation touched are restored to
  their previous local values, ``state.error`` is set, and the original
  exception propagates to the caller; a document that a later mutation has
  replaced in the meantime keeps the later value, so leftovers of the failed
  mutation on it stay until the next refresh

Concurrent edits from another session are not merged: the next snapshot wins.
"""

import asyncio
import logging
from datetime import date

from pydantic import ValidationError

from rebanho.core import client
from rebanho.core.writes import documents_touched
from rebanho.data.livestock import normalize_tag
from rebanho.data.models import AppUser, Animal, CalendarEvent, ManagementArea, Task
from rebanho.storage import photos
from rebanho.sync.reconcile import (
    AREAS,
    CALENDAR,
    COLLECTIONS,
    TASKS,
    HerdState,
    Reconciliation,
    apply_snapshot,
    reconcile_add,
    reconcile_area_assignment,
    reconcile_area_delete,
    reconcile_delete,
    reconcile_remove,
    reconcile_update,
    reconcile_upsert,
    restore_documents,
    set_error,
    set_loading,
)

logger = logging.getLogger(__name__)

DEFAULT_WATCH_INTERVAL = 30.0


class NotAuthenticatedError(Exception):
    """Raised when a mutation is attempted without a signed-in user."""

    def __init__(self):
        super().__init__("Usuário não autenticado ou BD indisponível.")


class FormValidationError(ValueError):
    """Raised when submitted form data is invalid.

    Attributes:
        errors: Field name -> user-facing message
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


def parse_weight(value: object) -> float:
    """Parse a form weight: blank means 0, otherwise a non-negative number.

    Raises:
        ValueError: If the value is not a number or is negative
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0.0
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    weight = float(value)
    if weight != weight or weight < 0:
        raise ValueError(f"Invalid weight: {value!r}")
    return weight


def validate_new_animal(state: HerdState, data: dict) -> dict[str, str]:
    """Check the registration form rules. Returns field -> message."""
    errors = {}
    brinco = (data.get("brinco") or "").strip()
    if not brinco:
        errors["brinco"] = "O brinco é obrigatório."
    elif any(normalize_tag(a.brinco) == normalize_tag(brinco) for a in state.animals):
        errors["brinco"] = "Este brinco já está cadastrado."

    if not data.get("data_nascimento") and not data.get("dataNascimento"):
        errors["data_nascimento"] = "A data de nascimento é obrigatória."

    try:
        parse_weight(data.get("peso_kg", data.get("pesoKg")))
    except (TypeError, ValueError):
        errors["peso_kg"] = "O peso deve ser um número não negativo."
    return errors


class HerdStore:
    """Local herd state for one user, synchronized with the backend."""

    def __init__(self, user: AppUser | None, token: str | None = None):
        self.user = user
        self.token = token
        self.state = HerdState()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _decode(self, collection: str, documents: list[tuple[str, dict]]) -> list:
        record_type = COLLECTIONS[collection][2]
        records = []
        for doc_id, fields in documents:
            try:
                records.append(record_type.model_validate({**fields, "id": doc_id}))
            except ValidationError as e:
                logger.warning("Rejected %s document %s: %s", collection, doc_id, e)
        return records

    async def load_collection(self, collection: str) -> None:
        """Load one collection and replace it in local state."""
        self.state = set_loading(self.state, collection, True)
        try:
            documents = await client.run_query(collection, self.user.uid, token=self.token)
        except Exception:
            logger.exception("Error fetching %s", collection)
            self.state = set_loading(set_error(self.state, f"Failed to fetch {collection}"), collection, False)
            return
        self.state = apply_snapshot(self.state, collection, self._decode(collection, documents))

    async def refresh(self) -> HerdState:
        """Load every collection. Without a user, just clears the loading flags."""
        if self.user is None:
            for collection in COLLECTIONS:
                self.state = set_loading(self.state, collection, False)
            return self.state

        await asyncio.gather(*[self.load_collection(c) for c in COLLECTIONS])
        return self.state

    async def watch(self, interval: float = DEFAULT_WATCH_INTERVAL) -> None:
        """Refresh periodically until cancelled."""
        while True:
            await self.refresh()
            await asyncio.sleep(interval)

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    def _require_user(self) -> str:
        if self.user is None:
            raise NotAuthenticatedError()
        return self.user.uid

    async def _commit(self, result: Reconciliation, error_message: str) -> None:
        previous = self.state
        self.state = result.state
        try:
            await client.commit(result.writes, token=self.token)
        except Exception:
            logger.exception("Background commit failed (%d writes)", len(result.writes))
            # documents a later mutation has replaced since are left alone
            owned = {
                (collection, doc_id)
                for collection, doc_id in documents_touched(result.writes)
                if self.state.find(collection, doc_id) is result.state.find(collection, doc_id)
            }
            restored = restore_documents(self.state, previous, owned)
            self.state = set_error(restored, error_message)
            raise

    # -------------------------------------------------------------------------
    # Animals
    # -------------------------------------------------------------------------

    async def add_animal(self, data: dict) -> Animal:
        """Register a new animal from form data.

        Raises:
            FormValidationError: If the form data is invalid
        """
        owner_id = self._require_user()
        errors = validate_new_animal(self.state, data)
        if errors:
            raise FormValidationError(errors)

        payload = {k: v for k, v in data.items() if k != "id"}
        payload["brinco"] = payload["brinco"].strip()
        for key in ("peso_kg", "pesoKg"):
            if key in payload:
                payload[key] = parse_weight(payload[key])
        try:
            animal = Animal.model_validate({**payload, "id": client.new_document_id()})
        except ValidationError as e:
            raise FormValidationError(
                {".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()}
            ) from e

        result = reconcile_add(self.state, animal, owner_id=owner_id)
        await self._commit(result, f"Falha ao salvar o animal {animal.brinco}. Por favor, tente novamente.")
        return result.state.get_animal(animal.id)

    async def update_animal(self, animal_id: str, changes: dict) -> None:
        """Edit an animal, propagating lineage and weight changes to its dams."""
        self._require_user()
        result = reconcile_update(self.state, animal_id, changes)
        await self._commit(result, f"Falha ao sincronizar dados do animal {animal_id}. Por favor, recarregue.")

    async def delete_animal(self, animal_id: str) -> None:
        """Delete an animal and its stub on its dam."""
        self._require_user()
        result = reconcile_delete(self.state, animal_id)
        await self._commit(result, f"Falha ao excluir o animal {animal_id}. A exclusão foi revertida.")

    async def add_photo(
        self,
        animal_id: str,
        content: bytes,
        filename: str,
        on_progress: photos.ProgressCallback | None = None,
    ) -> str:
        """Upload a photo and append its URL to the animal's photo list."""
        owner_id = self._require_user()
        self.state.get_animal(animal_id)  # unknown animals fail before the upload
        url = await photos.upload_photo(
            owner_id, animal_id, content, filename, token=self.token, on_progress=on_progress
        )
        # the list may have changed during the upload
        fotos = self.state.get_animal(animal_id).fotos
        await self.update_animal(animal_id, {"fotos": [*fotos, url]})
        return url

    # -------------------------------------------------------------------------
    # Calendar and tasks
    # -------------------------------------------------------------------------

    async def add_or_update_calendar_event(self, event: dict) -> CalendarEvent:
        owner_id = self._require_user()
        record = CalendarEvent.model_validate({**event, "id": event.get("id") or client.new_document_id()})
        result = reconcile_upsert(self.state, CALENDAR, record, owner_id=owner_id)
        await self._commit(result, "Falha ao salvar o evento do calendário.")
        return record

    async def delete_calendar_event(self, event_id: str) -> None:
        self._require_user()
        await self._commit(reconcile_remove(self.state, CALENDAR, event_id), "Falha ao excluir o evento.")

    async def add_task(self, description: str, due_date: date | None = None) -> Task:
        owner_id = self._require_user()
        task = Task(id=client.new_document_id(), description=description, due_date=due_date)
        result = reconcile_upsert(self.state, TASKS, task, owner_id=owner_id)
        await self._commit(result, "Falha ao adicionar a tarefa.")
        return task

    async def toggle_task_completion(self, task_id: str) -> None:
        owner_id = self._require_user()
        task = self.state.find(TASKS, task_id)
        if task is None:
            raise KeyError(task_id)
        toggled = task.model_copy(update={"is_completed": not task.is_completed})
        result = reconcile_upsert(self.state, TASKS, toggled, owner_id=owner_id)
        await self._commit(result, "Falha ao atualizar a tarefa.")

    async def delete_task(self, task_id: str) -> None:
        self._require_user()
        await self._commit(reconcile_remove(self.state, TASKS, task_id), "Falha ao excluir a tarefa.")

    # -------------------------------------------------------------------------
    # Management areas
    # -------------------------------------------------------------------------

    async def add_or_update_management_area(self, area: dict) -> ManagementArea:
        owner_id = self._require_user()
        record = ManagementArea.model_validate({**area, "id": area.get("id") or client.new_document_id()})
        result = reconcile_upsert(self.state, AREAS, record, owner_id=owner_id)
        await self._commit(result, "Falha ao salvar a área de manejo.")
        return record

    async def delete_management_area(self, area_id: str) -> None:
        self._require_user()
        await self._commit(reconcile_area_delete(self.state, area_id), "Falha ao excluir a área de manejo.")

    async def assign_animals_to_area(self, area_id: str, animal_ids: list[str]) -> None:
        self._require_user()
        result = reconcile_area_assignment(self.state, area_id, animal_ids)
        await self._commit(result, "Falha ao atribuir animais à área.")
