"""
Tests de los modelos de odontograma sin base de datos: dientes por
defecto, validaciones y state machine del plan de tratamiento.
"""

import pytest

from dentalchart.core.dentition import Quadrant
from dentalchart.core.exceptions import ValidationException
from dentalchart.models.odontogram import (
    Odontogram,
    SurfaceCondition,
    ToothRecord,
    build_default_teeth,
    default_surfaces,
    initialize_teeth,
    validate_full_dentition,
)
from dentalchart.models.treatment import (
    VALID_TRANSITIONS,
    TreatmentStatus,
    is_valid_transition,
)


class TestToothRecord:

    def test_default_teeth_are_32_healthy(self):
        teeth = build_default_teeth()
        assert [t.number for t in teeth] == list(range(1, 33))
        for tooth in teeth:
            assert tooth.mobility == 0
            assert tooth.bleeding is False
            assert tooth.plaque is False
            assert tooth.pocket_depth is None
            assert not tooth.is_affected
            assert set(tooth.surfaces) == {"mesial", "distal", "occlusal", "buccal", "lingual"}

    def test_quadrant_is_derived(self):
        assert ToothRecord(number=3).quadrant == Quadrant.UPPER_RIGHT
        assert ToothRecord(number=14).quadrant == Quadrant.UPPER_LEFT
        assert ToothRecord(number=19).quadrant == Quadrant.LOWER_LEFT
        assert ToothRecord(number=30).quadrant == Quadrant.LOWER_RIGHT
        assert ToothRecord(number=14).fdi_number == 26

    def test_quadrant_cannot_be_assigned(self):
        with pytest.raises(ValidationException):
            ToothRecord(number=3, quadrant=Quadrant.LOWER_LEFT)

    def test_invalid_number(self):
        with pytest.raises(ValidationException):
            ToothRecord(number=33)

    def test_surfaces_must_be_complete(self):
        surfaces = default_surfaces()
        del surfaces["lingual"]
        with pytest.raises(ValidationException):
            ToothRecord(number=1, surfaces=surfaces)

    def test_invalid_condition(self):
        surfaces = default_surfaces()
        surfaces["occlusal"]["condition"] = "fractured"
        with pytest.raises(ValidationException):
            ToothRecord(number=1, surfaces=surfaces)

    @pytest.mark.parametrize("mobility", [-1, 4])
    def test_mobility_range(self, mobility):
        with pytest.raises(ValidationException):
            ToothRecord(number=1, mobility=mobility)

    def test_pocket_depth_range(self):
        with pytest.raises(ValidationException):
            ToothRecord(number=1, pocket_depth={"mesial": 16})
        with pytest.raises(ValidationException):
            ToothRecord(number=1, pocket_depth={"occlusal": 3})
        tooth = ToothRecord(number=1, pocket_depth={"mesial": 3, "distal": None})
        assert tooth.pocket_depth == {"mesial": 3}

    def test_surface_state_must_be_object(self):
        surfaces = default_surfaces()
        surfaces["occlusal"] = "caries"
        with pytest.raises(ValidationException):
            ToothRecord(number=1, surfaces=surfaces)

        surfaces = default_surfaces()
        surfaces["occlusal"]["condition"] = ["caries"]
        with pytest.raises(ValidationException):
            ToothRecord(number=1, surfaces=surfaces)

    @pytest.mark.parametrize("pocket_depth", [
        {"mesial": "deep"},
        {"mesial": True},
        {"mesial": [3]},
        [3, 4],
        "3mm",
    ])
    def test_pocket_depth_type(self, pocket_depth):
        with pytest.raises(ValidationException):
            ToothRecord(number=1, pocket_depth=pocket_depth)

    @pytest.mark.parametrize("mobility", ["2", True, 1.5, None])
    def test_mobility_type(self, mobility):
        with pytest.raises(ValidationException):
            ToothRecord(number=1, mobility=mobility)

    def test_clone_does_not_share_surfaces(self):
        original = ToothRecord(number=14)
        copy = original.clone()
        copy.surfaces["occlusal"]["condition"] = SurfaceCondition.CARIES.value
        assert original.surfaces["occlusal"]["condition"] == SurfaceCondition.HEALTHY.value


class TestDentition:

    def test_full_dentition_accepted(self):
        validate_full_dentition(build_default_teeth())

    def test_missing_tooth_rejected(self):
        teeth = build_default_teeth()[:-1]
        with pytest.raises(ValidationException):
            validate_full_dentition(teeth)

    def test_duplicate_tooth_rejected(self):
        teeth = build_default_teeth()
        teeth[31] = ToothRecord(number=1)
        with pytest.raises(ValidationException) as exc:
            validate_full_dentition(teeth)
        assert "duplicados: [1]" in exc.value.detail

    def test_initialize_teeth_only_once(self):
        odontogram = Odontogram(version=1, teeth=[])
        assert initialize_teeth(odontogram) is True
        assert len(odontogram.teeth) == 32

        odontogram.teeth[0].notes = "Tercer molar en erupción"
        assert initialize_teeth(odontogram) is False
        assert len(odontogram.teeth) == 32
        assert odontogram.tooth(1).notes == "Tercer molar en erupción"


class TestTreatmentStateMachine:

    @pytest.mark.parametrize(
        "current, new",
        [
            (TreatmentStatus.PLANNED, TreatmentStatus.IN_PROGRESS),
            (TreatmentStatus.PLANNED, TreatmentStatus.CANCELLED),
            (TreatmentStatus.IN_PROGRESS, TreatmentStatus.COMPLETED),
            (TreatmentStatus.IN_PROGRESS, TreatmentStatus.CANCELLED),
        ],
    )
    def test_allowed_transitions(self, current, new):
        assert is_valid_transition(current, new)

    @pytest.mark.parametrize(
        "current, new",
        [
            (TreatmentStatus.PLANNED, TreatmentStatus.COMPLETED),
            (TreatmentStatus.PLANNED, TreatmentStatus.PLANNED),
            (TreatmentStatus.IN_PROGRESS, TreatmentStatus.PLANNED),
            (TreatmentStatus.COMPLETED, TreatmentStatus.PLANNED),
            (TreatmentStatus.COMPLETED, TreatmentStatus.CANCELLED),
            (TreatmentStatus.CANCELLED, TreatmentStatus.PLANNED),
        ],
    )
    def test_rejected_transitions(self, current, new):
        assert not is_valid_transition(current, new)

    def test_terminal_states(self):
        assert VALID_TRANSITIONS[TreatmentStatus.COMPLETED] == []
        assert VALID_TRANSITIONS[TreatmentStatus.CANCELLED] == []
