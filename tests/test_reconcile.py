"""Tests for the pure reconciliation functions."""

from datetime import date

import pytest

from rebanho.core.writes import DeleteWrite, SetWrite, UpdateWrite
from rebanho.data.models import AnimalStatus, ManagementArea, ProgenyRecord, Sexo, Task
from rebanho.sync.reconcile import (
    ANIMALS,
    AREAS,
    TASKS,
    AnimalNotFoundError,
    HerdState,
    apply_snapshot,
    progeny_stub_id,
    reconcile_add,
    reconcile_area_assignment,
    reconcile_area_delete,
    reconcile_delete,
    reconcile_remove,
    reconcile_update,
    reconcile_upsert,
    restore_documents,
)


def weighing(entry_id: str, day: date, kg: float, kind: str = "Nenhum") -> dict:
    return {"id": entry_id, "date": day, "weightKg": kg, "type": kind}


@pytest.fixture
def herd(make_animal):
    """Two dams without progeny."""
    return HerdState(animals=[make_animal("d99", "0099"), make_animal("d77", "0077")])


@pytest.fixture
def with_calf(herd, make_animal):
    """The herd after registering calf 0150 under dam 0099."""
    calf = make_animal("c150", "0150", sexo=Sexo.MACHO, mae_nome="0099")
    return reconcile_add(herd, calf, owner_id="u1").state


class TestAddAnimal:
    """Tests for reconcile_add."""

    def test_new_calf_gets_bare_stub_on_dam(self, herd, make_animal):
        """A calf registered under a dam appears once on her progeny list."""
        calf = make_animal("c150", "0150", sexo=Sexo.MACHO, mae_nome="0099")

        result = reconcile_add(herd, calf, owner_id="u1")

        progeny = result.state.get_animal("d99").historico_progenie
        assert len(progeny) == 1
        assert progeny[0].offspring_brinco == "0150"
        assert progeny[0].birth_weight_kg is None
        assert progeny[0].weaning_weight_kg is None
        assert progeny[0].yearling_weight_kg is None

    def test_writes_animal_then_dam(self, herd, make_animal):
        """The batch creates the animal and updates only the dam's progeny."""
        calf = make_animal("c150", "0150", sexo=Sexo.MACHO, mae_nome="0099")

        result = reconcile_add(herd, calf, owner_id="u1")

        assert len(result.writes) == 2
        created, dam_update = result.writes
        assert isinstance(created, SetWrite)
        assert created.doc_id == "c150"
        assert created.data["userId"] == "u1"
        assert created.data["maeId"] == "d99"
        assert dam_update == UpdateWrite(
            ANIMALS,
            "d99",
            {"historicoProgenie": [{"id": "prog_c150", "offspringBrinco": "0150"}]},
        )

    def test_links_calf_to_dam_id(self, herd, make_animal):
        """The resolved dam is recorded as the calf's maeId."""
        calf = make_animal("c150", "0150", mae_nome="0099")
        result = reconcile_add(herd, calf, owner_id="u1")
        assert result.state.get_animal("c150").mae_id == "d99"

    def test_initial_weight_seeds_history_and_stub(self, herd, make_animal):
        """A registration weight becomes the first weighing and the birth weight."""
        calf = make_animal("c150", "0150", mae_nome="0099", peso_kg=32.5)

        result = reconcile_add(herd, calf, owner_id="u1")

        saved = result.state.get_animal("c150")
        assert [w.id for w in saved.historico_pesagens] == ["initial-c150"]
        assert saved.historico_pesagens[0].weight_kg == 32.5
        assert result.state.get_animal("d99").historico_progenie[0].birth_weight_kg == 32.5

    def test_no_dam_reference_means_single_write(self, herd, make_animal):
        """Without a mother reference only the animal is written."""
        result = reconcile_add(herd, make_animal("x1", "0200"), owner_id="u1")
        assert len(result.writes) == 1
        assert result.state.animals[-1].id == "x1"

    def test_ambiguous_tag_does_not_propagate(self, make_animal):
        """Two females sharing a tag resolve to no dam."""
        state = HerdState(animals=[make_animal("a", "0099"), make_animal("b", "0099")])
        calf = make_animal("c150", "0150", mae_nome="0099")

        result = reconcile_add(state, calf, owner_id="u1")

        assert len(result.writes) == 1
        assert result.state.get_animal("c150").mae_id is None
        assert all(not a.historico_progenie for a in result.state.animals)

    def test_tag_match_is_case_insensitive(self, make_animal):
        state = HerdState(animals=[make_animal("d1", "ABC-1")])
        calf = make_animal("c1", "0150", mae_nome=" abc-1 ")
        result = reconcile_add(state, calf, owner_id="u1")
        assert len(result.state.get_animal("d1").historico_progenie) == 1

    def test_male_is_never_a_dam(self, make_animal):
        """A tag match on a male does not create a stub."""
        state = HerdState(animals=[make_animal("m1", "0099", sexo=Sexo.MACHO)])
        calf = make_animal("c150", "0150", mae_nome="0099")
        result = reconcile_add(state, calf, owner_id="u1")
        assert len(result.writes) == 1

    def test_mae_id_takes_precedence_over_tag(self, herd, make_animal):
        """An explicit dam id wins over the free-text reference."""
        calf = make_animal("c150", "0150", mae_nome="0099", mae_id="d77")

        result = reconcile_add(herd, calf, owner_id="u1")

        assert result.state.get_animal("d99").historico_progenie == []
        assert len(result.state.get_animal("d77").historico_progenie) == 1

    def test_existing_stub_is_not_duplicated(self, make_animal):
        """A dam that already lists the tag is left alone."""
        dam = make_animal(
            "d99",
            "0099",
            historico_progenie=[ProgenyRecord(id="legacy", offspring_brinco="0150")],
        )
        calf = make_animal("c150", "0150", mae_nome="0099")

        result = reconcile_add(HerdState(animals=[dam]), calf, owner_id="u1")

        assert len(result.writes) == 1
        assert len(result.state.get_animal("d99").historico_progenie) == 1

    def test_input_state_is_not_modified(self, herd, make_animal):
        calf = make_animal("c150", "0150", mae_nome="0099")
        reconcile_add(herd, calf, owner_id="u1")
        assert herd.get_animal("d99").historico_progenie == []
        assert len(herd.animals) == 2


class TestUpdateAnimal:
    """Tests for reconcile_update."""

    def test_yearling_weighing_reaches_dam_stub(self, with_calf):
        """A yearling weighing is copied onto the dam's stub."""
        result = reconcile_update(
            with_calf,
            "c150",
            {"historicoPesagens": [weighing("w1", date(2021, 1, 1), 310, "Sobreano")]},
        )

        stub = result.state.get_animal("d99").historico_progenie[0]
        assert stub.offspring_brinco == "0150"
        assert stub.yearling_weight_kg == 310
        assert stub.weaning_weight_kg is None

    def test_weighing_updates_current_weight(self, with_calf):
        result = reconcile_update(
            with_calf,
            "c150",
            {"historicoPesagens": [weighing("w1", date(2021, 1, 1), 310, "Sobreano")]},
        )

        calf = result.state.get_animal("c150")
        assert calf.peso_kg == 310
        animal_write = result.writes[0]
        assert set(animal_write.data) == {"historicoPesagens", "pesoKg"}

    def test_latest_weaning_weighing_wins(self, with_calf):
        """With several weaning weighings the most recent one is propagated."""
        history = [
            weighing("w2", date(2020, 9, 1), 240, "Desmame"),
            weighing("w1", date(2020, 7, 1), 200, "Desmame"),
            weighing("w3", date(2020, 10, 1), 260, "Nenhum"),
        ]

        result = reconcile_update(with_calf, "c150", {"historicoPesagens": history})

        stub = result.state.get_animal("d99").historico_progenie[0]
        assert stub.weaning_weight_kg == 240
        assert result.state.get_animal("c150").peso_kg == 260

    def test_unchanged_stub_weights_skip_dam_write(self, with_calf):
        """Re-saving the same weighings does not rewrite the dam."""
        history = [weighing("w1", date(2020, 7, 1), 200, "Desmame")]
        state = reconcile_update(with_calf, "c150", {"historicoPesagens": history}).state

        result = reconcile_update(state, "c150", {"historicoPesagens": history})

        assert [w.doc_id for w in result.writes] == ["c150"]

    def test_weighing_creates_missing_stub(self, make_animal):
        """A linked calf without a stub gets one carrying the weight."""
        state = HerdState(animals=[make_animal("d99", "0099"), make_animal("c150", "0150", mae_id="d99")])

        result = reconcile_update(
            state, "c150", {"historicoPesagens": [weighing("w1", date(2020, 7, 1), 200, "Desmame")]}
        )

        progeny = result.state.get_animal("d99").historico_progenie
        assert progeny == [ProgenyRecord(id=progeny_stub_id("c150"), offspring_brinco="0150", weaning_weight_kg=200)]

    def test_mother_change_moves_stub(self, with_calf):
        """Changing maeNome moves a bare stub from the old dam to the new one."""
        result = reconcile_update(with_calf, "c150", {"maeNome": "0077"})

        old_progeny = result.state.get_animal("d99").historico_progenie
        new_progeny = result.state.get_animal("d77").historico_progenie
        assert not any(p.offspring_brinco == "0150" for p in old_progeny)
        assert new_progeny == [ProgenyRecord(id="prog_c150", offspring_brinco="0150")]
        assert result.state.get_animal("c150").mae_id == "d77"

    def test_mother_change_writes(self, with_calf):
        result = reconcile_update(with_calf, "c150", {"maeNome": "0077"})

        assert result.writes[0] == UpdateWrite(ANIMALS, "c150", {"maeNome": "0077", "maeId": "d77"})
        dam_writes = {w.doc_id: w.data["historicoProgenie"] for w in result.writes[1:]}
        assert dam_writes == {
            "d99": [],
            "d77": [{"id": "prog_c150", "offspringBrinco": "0150"}],
        }

    def test_mother_change_touches_no_other_dam(self, with_calf, make_animal):
        """Exactly one stub leaves A, one arrives at B, and C is untouched."""
        third = make_animal(
            "d55", "0055", historico_progenie=[ProgenyRecord(id="p1", offspring_brinco="0300")]
        )
        state = apply_snapshot(with_calf, ANIMALS, [*with_calf.animals, third])
        before_a = len(state.get_animal("d99").historico_progenie)
        before_b = len(state.get_animal("d77").historico_progenie)

        result = reconcile_update(state, "c150", {"maeNome": "0077"})

        assert len(result.state.get_animal("d99").historico_progenie) == before_a - 1
        assert len(result.state.get_animal("d77").historico_progenie) == before_b + 1
        assert result.state.get_animal("d55") is state.get_animal("d55")
        assert {w.doc_id for w in result.writes} == {"c150", "d99", "d77"}

    def test_clearing_mother_removes_stub(self, with_calf):
        result = reconcile_update(with_calf, "c150", {"maeNome": None})

        assert result.state.get_animal("d99").historico_progenie == []
        assert result.writes[0] == UpdateWrite(ANIMALS, "c150", {}, ("maeId", "maeNome"))

    def test_unresolvable_new_mother_only_removes_stub(self, with_calf):
        """A reference to an unknown tag leaves the calf without a dam."""
        result = reconcile_update(with_calf, "c150", {"maeNome": "9999"})

        assert result.state.get_animal("d99").historico_progenie == []
        assert result.state.get_animal("c150").mae_id is None
        assert {w.doc_id for w in result.writes} == {"c150", "d99"}

    def test_non_lineage_edit_leaves_dam_identical(self, with_calf):
        """Editing unrelated fields never rewrites the dam."""
        state = reconcile_update(
            with_calf, "c150", {"historicoPesagens": [weighing("w1", date(2020, 7, 1), 200, "Desmame")]}
        ).state
        dam_before = state.get_animal("d99").model_dump_json()

        result = reconcile_update(state, "c150", {"nome": "Tufão", "status": "Vendido", "fotos": ["https://x/1.jpg"]})

        assert result.state.get_animal("d99").model_dump_json() == dam_before
        assert result.writes == [
            UpdateWrite(
                ANIMALS,
                "c150",
                {"nome": "Tufão", "status": AnimalStatus.VENDIDO, "fotos": ["https://x/1.jpg"]},
            )
        ]

    def test_tag_rename_follows_stub(self, with_calf):
        """Renaming the calf's tag renames its stub, keeping the stub id."""
        result = reconcile_update(with_calf, "c150", {"brinco": "0150-A"})

        stub = result.state.get_animal("d99").historico_progenie[0]
        assert stub.offspring_brinco == "0150-A"
        assert stub.id == "prog_c150"

    def test_accepts_attribute_names(self, with_calf):
        result = reconcile_update(with_calf, "c150", {"mae_nome": "0077"})
        assert len(result.state.get_animal("d77").historico_progenie) == 1

    def test_unknown_field_raises(self, with_calf):
        with pytest.raises(ValueError, match="Unknown animal field"):
            reconcile_update(with_calf, "c150", {"cor": "preta"})

    def test_missing_animal_raises(self, with_calf):
        with pytest.raises(AnimalNotFoundError):
            reconcile_update(with_calf, "nope", {"nome": "x"})


class TestDeleteAnimal:
    """Tests for reconcile_delete."""

    def test_removes_exactly_one_stub_by_tag(self, make_animal):
        """Only the deleted calf's stub leaves the dam, matched by tag."""
        dam = make_animal(
            "d99",
            "0099",
            historico_progenie=[
                ProgenyRecord(id="legacy-1", offspring_brinco="0150", birth_weight_kg=30),
                ProgenyRecord(id="legacy-2", offspring_brinco="0151"),
            ],
        )
        calf = make_animal("c150", "0150", mae_nome="0099")
        state = HerdState(animals=[dam, calf])

        result = reconcile_delete(state, "c150")

        assert [a.id for a in result.state.animals] == ["d99"]
        assert [p.offspring_brinco for p in result.state.get_animal("d99").historico_progenie] == ["0151"]
        assert result.writes[0] == DeleteWrite(ANIMALS, "c150")
        assert result.writes[1].doc_id == "d99"

    def test_without_dam_only_deletes(self, herd):
        result = reconcile_delete(herd, "d77")
        assert result.writes == [DeleteWrite(ANIMALS, "d77")]

    def test_missing_animal_raises(self, herd):
        with pytest.raises(AnimalNotFoundError):
            reconcile_delete(herd, "nope")


class TestOtherCollections:
    """Tests for tasks, calendar events and management areas."""

    def test_upsert_new_record_sets_owner(self):
        task = Task(id="t1", description="Vacinar lote 3")

        result = reconcile_upsert(HerdState(), TASKS, task, owner_id="u1")

        assert result.writes == [
            SetWrite(TASKS, "t1", {"description": "Vacinar lote 3", "isCompleted": False, "userId": "u1"})
        ]
        assert result.state.tasks == [task]

    def test_upsert_existing_record_updates_and_deletes_unset(self):
        task = Task(id="t1", description="Vacinar", due_date=date(2024, 9, 1))
        state = HerdState(tasks=[task])
        edited = Task(id="t1", description="Vacinar", is_completed=True)

        result = reconcile_upsert(state, TASKS, edited, owner_id="u1")

        assert result.writes == [
            UpdateWrite(TASKS, "t1", {"description": "Vacinar", "isCompleted": True}, ("dueDate",))
        ]

    def test_remove(self):
        state = HerdState(tasks=[Task(id="t1", description="x")])
        result = reconcile_remove(state, TASKS, "t1")
        assert result.state.tasks == []
        assert result.writes == [DeleteWrite(TASKS, "t1")]

    def test_area_delete_unassigns_animals(self, make_animal):
        area = ManagementArea(id="p1", name="Potreiro 1", area_ha=12)
        state = HerdState(
            animals=[make_animal("a1", "1", management_area_id="p1"), make_animal("a2", "2")],
            management_areas=[area],
        )

        result = reconcile_area_delete(state, "p1")

        assert result.state.management_areas == []
        assert result.state.get_animal("a1").management_area_id is None
        assert result.writes == [
            UpdateWrite(ANIMALS, "a1", {}, ("managementAreaId",)),
            DeleteWrite(AREAS, "p1"),
        ]

    def test_area_assignment_is_exact(self, make_animal):
        """Listed animals join the area; others in it leave."""
        state = HerdState(
            animals=[
                make_animal("a1", "1", management_area_id="p1"),
                make_animal("a2", "2"),
                make_animal("a3", "3", management_area_id="p1"),
            ]
        )

        result = reconcile_area_assignment(state, "p1", ["a2", "a3"])

        assert [a.management_area_id for a in result.state.animals] == [None, "p1", "p1"]
        assert result.writes == [
            UpdateWrite(ANIMALS, "a1", {}, ("managementAreaId",)),
            UpdateWrite(ANIMALS, "a2", {"managementAreaId": "p1"}),
        ]


class TestStateHelpers:
    """Tests for snapshot and restore helpers."""

    def test_initial_state_is_loading(self):
        assert HerdState().is_loading

    def test_apply_snapshot_clears_one_loading_flag(self, make_animal):
        state = apply_snapshot(HerdState(), ANIMALS, [make_animal("a1", "1")])
        assert state.loading["animals"] is False
        assert state.loading["tasks"] is True
        assert [a.id for a in state.animals] == ["a1"]

    def test_restore_documents(self, with_calf):
        """Touched documents go back to their previous values; new ones vanish."""
        previous = HerdState(animals=[a for a in with_calf.animals if a.id != "c150"])
        previous = apply_snapshot(
            previous, ANIMALS, [a.model_copy(update={"historico_progenie": []}) for a in previous.animals]
        )

        restored = restore_documents(with_calf, previous, {(ANIMALS, "c150"), (ANIMALS, "d99")})

        assert [a.id for a in restored.animals] == ["d99", "d77"]
        assert restored.get_animal("d99").historico_progenie == []
