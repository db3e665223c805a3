"""
Tests del plan de tratamiento: state machine, reemplazo completo,
traspaso de pendientes, concurrencia optimista e inmutabilidad de los
tratamientos realizados.
"""

from decimal import Decimal

import pytest

from dentalchart.core.exceptions import (
    ConflictException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from dentalchart.models.odontogram import Odontogram, build_default_teeth
from dentalchart.models.treatment import (
    CompletedTreatment,
    TreatmentPriority,
    TreatmentStatus,
)
from dentalchart.schemas.odontogram import OdontogramCreate, OdontogramRevision
from dentalchart.schemas.treatment_plan import (
    CompletedTreatmentCreate,
    TreatmentPlanItemCreate,
    TreatmentStatusChange,
)
from dentalchart.services import odontogram_service, treatment_plan_service
from dentalchart.services.odontogram_service import load_odontogram


async def _new_chart(db, doctor, patient):
    return await odontogram_service.create_odontogram(
        db, doctor, OdontogramCreate(patient_id=patient.id)
    )


async def _add(db, doctor, chart_id, tooth=14, procedure="Resina oclusal", cost="150.00"):
    return await treatment_plan_service.add_item(
        db,
        doctor,
        chart_id,
        TreatmentPlanItemCreate(
            tooth=tooth,
            procedure=procedure,
            priority=TreatmentPriority.HIGH,
            estimated_cost=Decimal(cost),
            estimated_duration=45,
        ),
    )


async def _move(db, doctor, chart_id, item_id, status, **kwargs):
    return await treatment_plan_service.change_status(
        db, doctor, chart_id, item_id, TreatmentStatusChange(status=status, **kwargs)
    )


@pytest.mark.asyncio
class TestStateMachine:

    async def test_full_lifecycle(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        item = await _add(db_session, test_doctor, chart.id)
        assert item.status == TreatmentStatus.PLANNED
        assert item.completed_at is None

        item = await _move(db_session, test_doctor, chart.id, item.id, TreatmentStatus.IN_PROGRESS)
        assert item.status == TreatmentStatus.IN_PROGRESS

        item = await _move(
            db_session, test_doctor, chart.id, item.id, TreatmentStatus.COMPLETED,
            actual_cost=Decimal("180.00"), notes="Resina A2",
        )
        assert item.status == TreatmentStatus.COMPLETED
        assert item.completed_at is not None
        assert item.completed_by == test_doctor.id

        with pytest.raises(InvalidTransitionException) as exc:
            await _move(db_session, test_doctor, chart.id, item.id, TreatmentStatus.PLANNED)
        assert exc.value.status_code == 409
        assert exc.value.current == "completed"

        odontogram = await load_odontogram(db_session, test_doctor.clinic_id, chart.id)
        assert len(odontogram.completed_treatments) == 1
        entry = odontogram.completed_treatments[0]
        assert entry.plan_item_id == item.id
        assert entry.tooth == 14
        assert entry.cost == Decimal("180.00")
        assert entry.doctor_id == test_doctor.id

    async def test_completion_defaults_to_estimated_cost(
        self, db_session, test_doctor, test_patient
    ):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        item = await _add(db_session, test_doctor, chart.id, cost="95.50")
        await _move(db_session, test_doctor, chart.id, item.id, TreatmentStatus.IN_PROGRESS)
        await _move(db_session, test_doctor, chart.id, item.id, TreatmentStatus.COMPLETED)

        odontogram = await load_odontogram(db_session, test_doctor.clinic_id, chart.id)
        assert odontogram.completed_treatments[0].cost == Decimal("95.50")

    async def test_cannot_skip_in_progress(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        item = await _add(db_session, test_doctor, chart.id)
        with pytest.raises(InvalidTransitionException):
            await _move(db_session, test_doctor, chart.id, item.id, TreatmentStatus.COMPLETED)

    async def test_same_state_rejected(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        item = await _add(db_session, test_doctor, chart.id)
        with pytest.raises(InvalidTransitionException):
            await _move(db_session, test_doctor, chart.id, item.id, TreatmentStatus.PLANNED)

    async def test_cancel_paths(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        planned = await _add(db_session, test_doctor, chart.id, tooth=3)
        started = await _add(db_session, test_doctor, chart.id, tooth=30)
        await _move(db_session, test_doctor, chart.id, started.id, TreatmentStatus.IN_PROGRESS)

        planned = await _move(db_session, test_doctor, chart.id, planned.id, TreatmentStatus.CANCELLED)
        started = await _move(db_session, test_doctor, chart.id, started.id, TreatmentStatus.CANCELLED)
        assert planned.status == TreatmentStatus.CANCELLED
        assert started.status == TreatmentStatus.CANCELLED

        with pytest.raises(InvalidTransitionException):
            await _move(db_session, test_doctor, chart.id, planned.id, TreatmentStatus.IN_PROGRESS)

        odontogram = await load_odontogram(db_session, test_doctor.clinic_id, chart.id)
        assert odontogram.completed_treatments == []

    async def test_unknown_item(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        with pytest.raises(NotFoundException):
            await _move(db_session, test_doctor, chart.id, chart.id, TreatmentStatus.IN_PROGRESS)


@pytest.mark.asyncio
class TestPlanEditing:

    async def test_unknown_tooth_rejected(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ValidationException):
            await _add(db_session, test_doctor, chart.id, tooth=99)

    async def test_items_keep_insertion_order(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        await _add(db_session, test_doctor, chart.id, tooth=30, procedure="Endodoncia")
        await _add(db_session, test_doctor, chart.id, tooth=3, procedure="Sellante")
        current = await odontogram_service.get_odontogram(
            db_session, test_doctor.clinic_id, chart.id
        )
        assert [i.procedure for i in current.treatment_plan] == ["Endodoncia", "Sellante"]

    async def test_replace_plan_discards_everything(
        self, db_session, test_doctor, test_patient
    ):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        old = await _add(db_session, test_doctor, chart.id, tooth=14)
        await _move(db_session, test_doctor, chart.id, old.id, TreatmentStatus.IN_PROGRESS)

        replaced = await treatment_plan_service.replace_plan(
            db_session,
            test_doctor,
            chart.id,
            [
                TreatmentPlanItemCreate(tooth=19, procedure="Corona", estimated_cost=Decimal("800")),
                TreatmentPlanItemCreate(tooth=20, procedure="Profilaxis"),
            ],
        )
        assert [i.tooth for i in replaced.treatment_plan] == [19, 20]
        assert all(i.status == TreatmentStatus.PLANNED for i in replaced.treatment_plan)
        assert old.id not in {i.id for i in replaced.treatment_plan}

    async def test_replace_plan_validates_all_teeth_first(
        self, db_session, test_doctor, test_patient
    ):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        await _add(db_session, test_doctor, chart.id, tooth=14)
        with pytest.raises(ValidationException):
            await treatment_plan_service.replace_plan(
                db_session,
                test_doctor,
                chart.id,
                [
                    TreatmentPlanItemCreate(tooth=2, procedure="Exodoncia"),
                    TreatmentPlanItemCreate(tooth=0, procedure="Inválido"),
                ],
            )
        current = await odontogram_service.get_odontogram(
            db_session, test_doctor.clinic_id, chart.id
        )
        assert [i.tooth for i in current.treatment_plan] == [14]

    async def test_plan_update_keeps_version(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        await _add(db_session, test_doctor, chart.id)
        history = await odontogram_service.list_versions(
            db_session, test_doctor.clinic_id, test_patient.id
        )
        assert [h.version for h in history] == [1]
        assert history[0].treatment_count == 1


@pytest.mark.asyncio
class TestConcurrency:

    async def test_stale_lock_version_conflicts(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        stale = chart.lock_version
        await _add(db_session, test_doctor, chart.id)

        with pytest.raises(ConflictException):
            await treatment_plan_service.add_item(
                db_session,
                test_doctor,
                chart.id,
                TreatmentPlanItemCreate(tooth=3, procedure="Sellante"),
                expected_lock_version=stale,
            )

    async def test_matching_lock_version_accepted(
        self, db_session, test_doctor, test_patient
    ):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        item = await treatment_plan_service.add_item(
            db_session,
            test_doctor,
            chart.id,
            TreatmentPlanItemCreate(tooth=3, procedure="Sellante"),
            expected_lock_version=chart.lock_version,
        )
        assert item.tooth == 3

        current = await odontogram_service.get_odontogram(
            db_session, test_doctor.clinic_id, chart.id
        )
        assert current.lock_version == chart.lock_version + 1

    async def test_duplicate_version_from_parallel_sessions(
        self, db_session, session_factory, test_doctor, test_patient
    ):
        """Dos transacciones calculan la misma versión; la segunda en escribir pierde."""
        async with session_factory() as first, session_factory() as second:
            assert await odontogram_service.next_version(first, test_patient.id) == 1
            assert await odontogram_service.next_version(second, test_patient.id) == 1

            for session in (first, second):
                session.add(
                    Odontogram(
                        clinic_id=test_doctor.clinic_id,
                        patient_id=test_patient.id,
                        doctor_id=test_doctor.id,
                        version=1,
                        teeth=build_default_teeth(),
                        treatment_plan=[],
                        completed_treatments=[],
                    )
                )

            await odontogram_service.flush_or_conflict(first)
            await first.commit()

            with pytest.raises(ConflictException):
                await odontogram_service.flush_or_conflict(second)
            await second.rollback()

        history = await odontogram_service.list_versions(
            db_session, test_doctor.clinic_id, test_patient.id
        )
        assert [h.version for h in history] == [1]

    async def test_lost_update_from_parallel_sessions(
        self, db_session, session_factory, test_doctor, test_patient
    ):
        """Dos transacciones leen la misma fila; la segunda escritura se rechaza."""
        chart = await _new_chart(db_session, test_doctor, test_patient)
        await db_session.commit()

        async with session_factory() as first, session_factory() as second:
            mine = await load_odontogram(first, test_doctor.clinic_id, chart.id)
            theirs = await load_odontogram(second, test_doctor.clinic_id, chart.id)
            assert mine.lock_version == theirs.lock_version

            mine.exam_notes = "Caries incipiente en 14"
            await odontogram_service.flush_or_conflict(first)
            await first.commit()

            theirs.exam_notes = "Sin hallazgos"
            with pytest.raises(ConflictException):
                await odontogram_service.flush_or_conflict(second)
            await second.rollback()

        current = await load_odontogram(
            db_session, test_doctor.clinic_id, chart.id, refresh=True
        )
        assert current.exam_notes == "Caries incipiente en 14"
        assert current.lock_version == chart.lock_version + 1


@pytest.mark.asyncio
class TestArchivedSnapshots:

    async def _archived_chart(self, db, doctor, patient):
        chart = await _new_chart(db, doctor, patient)
        item = await _add(db, doctor, chart.id, tooth=14)
        await odontogram_service.set_active(db, doctor, chart.id, False)
        return chart, item

    async def test_add_item_rejected(self, db_session, test_doctor, test_patient):
        chart, _ = await self._archived_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ConflictException):
            await _add(db_session, test_doctor, chart.id, tooth=3)

    async def test_replace_plan_rejected(self, db_session, test_doctor, test_patient):
        chart, _ = await self._archived_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ConflictException):
            await treatment_plan_service.replace_plan(
                db_session, test_doctor, chart.id,
                [TreatmentPlanItemCreate(tooth=3, procedure="Sellante")],
            )

    async def test_status_change_rejected(self, db_session, test_doctor, test_patient):
        chart, item = await self._archived_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ConflictException):
            await _move(db_session, test_doctor, chart.id, item.id, TreatmentStatus.IN_PROGRESS)

    async def test_completed_treatment_rejected(self, db_session, test_doctor, test_patient):
        chart, _ = await self._archived_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ConflictException):
            await treatment_plan_service.record_completed_treatment(
                db_session, test_doctor, chart.id,
                CompletedTreatmentCreate(tooth=8, procedure="Blanqueamiento"),
            )

    async def test_carry_into_archived_rejected(self, db_session, test_doctor, test_patient):
        chart, _ = await self._archived_chart(db_session, test_doctor, test_patient)
        await _new_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ConflictException):
            await treatment_plan_service.carry_forward_plan(
                db_session, test_doctor, chart.id, from_version=2
            )

    async def test_ledger_unchanged_and_editable_after_reactivation(
        self, db_session, test_doctor, test_patient
    ):
        chart, item = await self._archived_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ConflictException):
            await _add(db_session, test_doctor, chart.id, tooth=3)

        archived = await odontogram_service.get_odontogram(
            db_session, test_doctor.clinic_id, chart.id
        )
        assert [i.id for i in archived.treatment_plan] == [item.id]

        await odontogram_service.set_active(db_session, test_doctor, chart.id, True)
        added = await _add(db_session, test_doctor, chart.id, tooth=3)
        assert added.tooth == 3


@pytest.mark.asyncio
class TestCarryForward:

    async def test_copies_only_pending_items(self, db_session, test_doctor, test_patient):
        v1 = await _new_chart(db_session, test_doctor, test_patient)
        pending = await _add(db_session, test_doctor, v1.id, tooth=14, procedure="Resina")
        started = await _add(db_session, test_doctor, v1.id, tooth=3, procedure="Endodoncia")
        done = await _add(db_session, test_doctor, v1.id, tooth=30, procedure="Profilaxis")
        await _move(db_session, test_doctor, v1.id, started.id, TreatmentStatus.IN_PROGRESS)
        await _move(db_session, test_doctor, v1.id, done.id, TreatmentStatus.IN_PROGRESS)
        await _move(db_session, test_doctor, v1.id, done.id, TreatmentStatus.COMPLETED)

        v2 = await odontogram_service.revise_odontogram(
            db_session, test_doctor, test_patient.id, OdontogramRevision()
        )
        assert v2.treatment_plan == []

        v2 = await treatment_plan_service.carry_forward_plan(
            db_session, test_doctor, v2.id, from_version=1
        )
        assert [(i.tooth, i.status) for i in v2.treatment_plan] == [
            (14, TreatmentStatus.PLANNED),
            (3, TreatmentStatus.IN_PROGRESS),
        ]
        assert pending.id not in {i.id for i in v2.treatment_plan}

        v1_after = await odontogram_service.get_version(
            db_session, test_doctor.clinic_id, test_patient.id, 1
        )
        assert len(v1_after.treatment_plan) == 3

    async def test_copies_keep_source_reference(self, db_session, test_doctor, test_patient):
        v1 = await _new_chart(db_session, test_doctor, test_patient)
        source = await _add(db_session, test_doctor, v1.id, tooth=19, procedure="Corona")
        v2 = await _new_chart(db_session, test_doctor, test_patient)

        v2 = await treatment_plan_service.carry_forward_plan(
            db_session, test_doctor, v2.id, from_version=1
        )
        assert [i.carried_from_item_id for i in v2.treatment_plan] == [source.id]
        assert v2.treatment_plan[0].id != source.id

    async def test_repeated_carry_does_not_duplicate(
        self, db_session, test_doctor, test_patient
    ):
        v1 = await _new_chart(db_session, test_doctor, test_patient)
        await _add(db_session, test_doctor, v1.id, tooth=14, cost="100.00")
        v2 = await odontogram_service.revise_odontogram(
            db_session, test_doctor, test_patient.id,
            OdontogramRevision(deactivate_previous=True),
        )

        first = await treatment_plan_service.carry_forward_plan(
            db_session, test_doctor, v2.id, from_version=1
        )
        second = await treatment_plan_service.carry_forward_plan(
            db_session, test_doctor, v2.id, from_version=1
        )
        assert len(first.treatment_plan) == 1
        assert [i.id for i in second.treatment_plan] == [i.id for i in first.treatment_plan]
        assert second.lock_version == first.lock_version

    async def test_new_pending_items_are_carried_later(
        self, db_session, test_doctor, test_patient
    ):
        v1 = await _new_chart(db_session, test_doctor, test_patient)
        await _add(db_session, test_doctor, v1.id, tooth=14)
        v2 = await _new_chart(db_session, test_doctor, test_patient)
        await treatment_plan_service.carry_forward_plan(
            db_session, test_doctor, v2.id, from_version=1
        )

        late = await _add(db_session, test_doctor, v1.id, tooth=3, procedure="Sellante")
        v2 = await treatment_plan_service.carry_forward_plan(
            db_session, test_doctor, v2.id, from_version=1
        )
        assert [i.tooth for i in v2.treatment_plan] == [14, 3]
        assert v2.treatment_plan[1].carried_from_item_id == late.id

    async def test_carried_source_cannot_change_status(
        self, db_session, test_doctor, test_patient
    ):
        v1 = await _new_chart(db_session, test_doctor, test_patient)
        source = await _add(db_session, test_doctor, v1.id, tooth=14)
        v2 = await _new_chart(db_session, test_doctor, test_patient)
        v2 = await treatment_plan_service.carry_forward_plan(
            db_session, test_doctor, v2.id, from_version=1
        )

        with pytest.raises(ConflictException):
            await _move(db_session, test_doctor, v1.id, source.id, TreatmentStatus.IN_PROGRESS)

        copy = await _move(
            db_session, test_doctor, v2.id, v2.treatment_plan[0].id, TreatmentStatus.IN_PROGRESS
        )
        assert copy.status == TreatmentStatus.IN_PROGRESS

    async def test_archived_source_can_be_carried(
        self, db_session, test_doctor, test_patient
    ):
        v1 = await _new_chart(db_session, test_doctor, test_patient)
        await _add(db_session, test_doctor, v1.id, tooth=30, procedure="Endodoncia")
        v2 = await odontogram_service.revise_odontogram(
            db_session, test_doctor, test_patient.id,
            OdontogramRevision(deactivate_previous=True),
        )
        v2 = await treatment_plan_service.carry_forward_plan(
            db_session, test_doctor, v2.id, from_version=1
        )
        assert [i.tooth for i in v2.treatment_plan] == [30]

    async def test_same_version_rejected(self, db_session, test_doctor, test_patient):
        v1 = await _new_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ValidationException):
            await treatment_plan_service.carry_forward_plan(
                db_session, test_doctor, v1.id, from_version=1
            )

    async def test_missing_source_version(self, db_session, test_doctor, test_patient):
        v1 = await _new_chart(db_session, test_doctor, test_patient)
        with pytest.raises(NotFoundException):
            await treatment_plan_service.carry_forward_plan(
                db_session, test_doctor, v1.id, from_version=7
            )


@pytest.mark.asyncio
class TestCompletedTreatments:

    async def test_record_completed_treatment(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        entry = await treatment_plan_service.record_completed_treatment(
            db_session,
            test_doctor,
            chart.id,
            CompletedTreatmentCreate(tooth=8, procedure="Blanqueamiento", cost=Decimal("250")),
        )
        assert entry.tooth == 8
        assert entry.plan_item_id is None
        assert entry.doctor_id == test_doctor.id
        assert entry.date is not None

    async def test_record_rejects_unknown_tooth(self, db_session, test_doctor, test_patient):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        with pytest.raises(ValidationException):
            await treatment_plan_service.record_completed_treatment(
                db_session,
                test_doctor,
                chart.id,
                CompletedTreatmentCreate(tooth=33, procedure="Exodoncia"),
            )

    async def test_completed_treatment_cannot_be_modified(
        self, db_session, test_doctor, test_patient
    ):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        created = await treatment_plan_service.record_completed_treatment(
            db_session,
            test_doctor,
            chart.id,
            CompletedTreatmentCreate(tooth=8, procedure="Carilla", cost=Decimal("400")),
        )
        entry = await db_session.get(CompletedTreatment, created.id)
        entry.cost = Decimal("1.00")
        with pytest.raises(ConflictException):
            await db_session.flush()
        await db_session.rollback()

    async def test_completed_treatment_cannot_be_deleted(
        self, db_session, test_doctor, test_patient
    ):
        chart = await _new_chart(db_session, test_doctor, test_patient)
        created = await treatment_plan_service.record_completed_treatment(
            db_session,
            test_doctor,
            chart.id,
            CompletedTreatmentCreate(tooth=8, procedure="Carilla"),
        )
        entry = await db_session.get(CompletedTreatment, created.id)
        await db_session.delete(entry)
        with pytest.raises(ConflictException):
            await db_session.flush()
        await db_session.rollback()
