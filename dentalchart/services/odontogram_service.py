"""
Servicio de odontogramas: creación y versionado, revisiones por diente,
archivado y resumen clínico.

Las escrituras de un mismo paciente se serializan bloqueando la fila del
paciente (SELECT ... FOR UPDATE). Además, UNIQUE(patient_id, version) y
lock_version (version_id_col) convierten cualquier carrera residual en
ConflictException.
"""

import copy
import logging
import math
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from dentalchart.core.dentition import validate_tooth_number
from dentalchart.core.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
)
from dentalchart.models.odontogram import (
    Odontogram,
    SurfaceCondition,
    ToothRecord,
    initialize_teeth,
    validate_full_dentition,
)
from dentalchart.models.patient import Patient
from dentalchart.models.treatment import TreatmentStatus
from dentalchart.models.user import User
from dentalchart.schemas.odontogram import (
    ChartSummary,
    OdontogramCreate,
    OdontogramListItem,
    OdontogramListResponse,
    OdontogramResponse,
    OdontogramRevision,
    PeriodontalChart,
    ToothPatch,
    ToothRecordIn,
    ToothRecordResponse,
)
from dentalchart.schemas.treatment_plan import (
    CompletedTreatmentResponse,
    TreatmentPlanItemResponse,
)
from dentalchart.services.audit_service import log_action

logger = logging.getLogger(__name__)


# ── Helpers de serialización ─────────────────────────

def odontogram_to_response(odontogram: Odontogram) -> OdontogramResponse:
    """Convierte un modelo Odontogram a su schema de respuesta."""
    doctor_name = None
    if odontogram.doctor:
        doctor_name = odontogram.doctor.full_name

    return OdontogramResponse(
        id=odontogram.id,
        clinic_id=odontogram.clinic_id,
        patient_id=odontogram.patient_id,
        doctor_id=odontogram.doctor_id,
        doctor_name=doctor_name,
        version=odontogram.version,
        is_active=odontogram.is_active,
        lock_version=odontogram.lock_version,
        periodontal_chart=PeriodontalChart(**odontogram.periodontal_chart),
        exam_notes=odontogram.exam_notes,
        teeth=[ToothRecordResponse.model_validate(t) for t in odontogram.teeth],
        treatment_plan=[
            TreatmentPlanItemResponse.model_validate(i) for i in odontogram.treatment_plan
        ],
        completed_treatments=[
            CompletedTreatmentResponse.model_validate(c)
            for c in odontogram.completed_treatments
        ],
        created_at=odontogram.created_at,
        updated_at=odontogram.updated_at,
    )


def plan_progress(odontogram: Odontogram) -> float:
    """% de ítems completados sobre los no cancelados."""
    considered = [
        i for i in odontogram.treatment_plan if i.status != TreatmentStatus.CANCELLED
    ]
    if not considered:
        return 0.0
    done = sum(1 for i in considered if i.status == TreatmentStatus.COMPLETED)
    return round(done / len(considered) * 100, 1)


def _to_list_item(odontogram: Odontogram) -> OdontogramListItem:
    return OdontogramListItem(
        id=odontogram.id,
        patient_id=odontogram.patient_id,
        doctor_id=odontogram.doctor_id,
        doctor_name=odontogram.doctor.full_name if odontogram.doctor else None,
        version=odontogram.version,
        is_active=odontogram.is_active,
        created_at=odontogram.created_at,
        treatment_count=len(odontogram.treatment_plan),
        progress=plan_progress(odontogram),
        teeth_affected=[t.number for t in odontogram.teeth if t.is_affected],
    )


def _tooth_from_input(data: ToothRecordIn) -> ToothRecord:
    return ToothRecord(
        number=data.number,
        surfaces=data.surfaces.model_dump(mode="json"),
        mobility=data.mobility,
        pocket_depth=(
            data.pocket_depth.model_dump(exclude_none=True) if data.pocket_depth else None
        ),
        bleeding=data.bleeding,
        plaque=data.plaque,
        notes=data.notes,
    )


def _apply_patch(tooth: ToothRecord, patch: ToothPatch) -> None:
    """Aplica cambios parciales sobre una copia del diente."""
    if patch.surfaces:
        surfaces = copy.deepcopy(tooth.surfaces)
        for name, state in patch.surfaces.items():
            surfaces[name.value] = state.model_dump(mode="json")
        tooth.surfaces = surfaces
    if patch.mobility is not None:
        tooth.mobility = patch.mobility
    if patch.pocket_depth is not None:
        tooth.pocket_depth = patch.pocket_depth.model_dump(exclude_none=True)
    if patch.bleeding is not None:
        tooth.bleeding = patch.bleeding
    if patch.plaque is not None:
        tooth.plaque = patch.plaque
    if patch.notes is not None:
        tooth.notes = patch.notes


# ── Concurrencia ─────────────────────────────────────

async def lock_patient(db: AsyncSession, clinic_id: UUID, patient_id: UUID) -> Patient:
    """
    Verifica que el paciente exista en la clínica y bloquea su fila
    hasta el fin de la transacción.
    """
    result = await db.execute(
        select(Patient)
        .where(
            Patient.id == patient_id,
            Patient.clinic_id == clinic_id,
        )
        .with_for_update()
    )
    patient = result.scalar_one_or_none()
    if not patient:
        raise NotFoundException("Paciente")
    return patient


def check_lock_version(odontogram: Odontogram, expected: int | None) -> None:
    """Compare-and-swap explícito sobre lock_version."""
    if expected is not None and expected != odontogram.lock_version:
        logger.warning(
            "Conflicto de concurrencia en odontograma %s: esperado lock_version=%s, actual=%s",
            odontogram.id, expected, odontogram.lock_version,
        )
        raise ConflictException(
            f"El odontograma fue modificado por otro usuario "
            f"(lock_version actual {odontogram.lock_version}, esperado {expected})"
        )


async def flush_or_conflict(db: AsyncSession) -> None:
    """Traduce violaciones de unicidad y de lock_version a ConflictException."""
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning("Conflicto de integridad al guardar odontograma: %s", exc.orig)
        raise ConflictException(
            "Conflicto al guardar el odontograma: la versión ya existe"
        ) from exc
    except StaleDataError as exc:
        logger.warning("Actualización concurrente detectada: %s", exc)
        raise ConflictException(
            "El odontograma fue modificado por otro usuario; recargue e intente de nuevo"
        ) from exc


# ── Lecturas ─────────────────────────────────────────

async def _max_version(db: AsyncSession, patient_id: UUID) -> int:
    result = await db.execute(
        select(func.max(Odontogram.version)).where(Odontogram.patient_id == patient_id)
    )
    return result.scalar() or 0


async def next_version(
    db: AsyncSession, patient_id: UUID, requested: int | None = None
) -> int:
    """
    Siguiente versión del paciente (máxima + 1).
    Una versión pedida que ya existe es un conflicto; una que deja
    huecos es un error de validación.
    """
    current_max = await _max_version(db, patient_id)
    expected = current_max + 1
    if requested is None:
        return expected
    if requested <= current_max:
        raise ConflictException(
            f"La versión {requested} del odontograma ya existe para este paciente"
        )
    if requested != expected:
        raise ValidationException(
            f"Versión {requested} inválida: la siguiente versión debe ser {expected}"
        )
    return requested


async def load_odontogram(
    db: AsyncSession, clinic_id: UUID, odontogram_id: UUID, *, refresh: bool = False
) -> Odontogram:
    query = select(Odontogram).where(
        Odontogram.id == odontogram_id,
        Odontogram.clinic_id == clinic_id,
    )
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    odontogram = result.unique().scalar_one_or_none()
    if not odontogram:
        raise NotFoundException("Odontograma", "Odontograma no encontrado")
    return odontogram


async def load_locked(
    db: AsyncSession, clinic_id: UUID, odontogram_id: UUID
) -> Odontogram:
    """
    Bloquea al paciente dueño del odontograma y recién entonces lo carga,
    de modo que las validaciones se hacen sobre el estado posterior al lock.
    """
    result = await db.execute(
        select(Odontogram.patient_id).where(
            Odontogram.id == odontogram_id,
            Odontogram.clinic_id == clinic_id,
        )
    )
    patient_id = result.scalar_one_or_none()
    if patient_id is None:
        raise NotFoundException("Odontograma", "Odontograma no encontrado")
    await lock_patient(db, clinic_id, patient_id)
    return await load_odontogram(db, clinic_id, odontogram_id, refresh=True)


async def load_version(
    db: AsyncSession, clinic_id: UUID, patient_id: UUID, version: int
) -> Odontogram:
    result = await db.execute(
        select(Odontogram).where(
            Odontogram.clinic_id == clinic_id,
            Odontogram.patient_id == patient_id,
            Odontogram.version == version,
        )
    )
    odontogram = result.unique().scalar_one_or_none()
    if not odontogram:
        raise NotFoundException(
            "Odontograma", f"Versión {version} del odontograma no encontrada"
        )
    return odontogram


async def load_current(db: AsyncSession, clinic_id: UUID, patient_id: UUID) -> Odontogram:
    """Versión vigente: la más alta con is_active = True."""
    result = await db.execute(
        select(Odontogram)
        .where(
            Odontogram.clinic_id == clinic_id,
            Odontogram.patient_id == patient_id,
            Odontogram.is_active.is_(True),
        )
        .order_by(Odontogram.version.desc())
        .limit(1)
    )
    odontogram = result.unique().scalar_one_or_none()
    if not odontogram:
        raise NotFoundException(
            "Odontograma", "El paciente no tiene un odontograma activo"
        )
    return odontogram


async def get_odontogram(
    db: AsyncSession, clinic_id: UUID, odontogram_id: UUID
) -> OdontogramResponse:
    return odontogram_to_response(await load_odontogram(db, clinic_id, odontogram_id))


async def get_version(
    db: AsyncSession, clinic_id: UUID, patient_id: UUID, version: int
) -> OdontogramResponse:
    return odontogram_to_response(await load_version(db, clinic_id, patient_id, version))


async def get_current(
    db: AsyncSession, clinic_id: UUID, patient_id: UUID
) -> OdontogramResponse:
    return odontogram_to_response(await load_current(db, clinic_id, patient_id))


async def list_versions(
    db: AsyncSession,
    clinic_id: UUID,
    patient_id: UUID,
    include_archived: bool = True,
) -> list[OdontogramListItem]:
    """Historial de versiones del paciente, de la más reciente a la más antigua."""
    query = select(Odontogram).where(
        Odontogram.clinic_id == clinic_id,
        Odontogram.patient_id == patient_id,
    )
    if not include_archived:
        query = query.where(Odontogram.is_active.is_(True))
    result = await db.execute(query.order_by(Odontogram.version.desc()))
    return [_to_list_item(o) for o in result.unique().scalars().all()]


async def list_odontograms(
    db: AsyncSession,
    clinic_id: UUID,
    *,
    patient_id: UUID | None = None,
    doctor_id: UUID | None = None,
    is_active: bool | None = None,
    page: int = 1,
    size: int = 10,
) -> OdontogramListResponse:
    """Lista los odontogramas de la clínica con paginación y filtros."""
    filters = [Odontogram.clinic_id == clinic_id]
    if patient_id is not None:
        filters.append(Odontogram.patient_id == patient_id)
    if doctor_id is not None:
        filters.append(Odontogram.doctor_id == doctor_id)
    if is_active is not None:
        filters.append(Odontogram.is_active.is_(is_active))

    total_result = await db.execute(select(func.count(Odontogram.id)).where(*filters))
    total = total_result.scalar() or 0

    offset = (page - 1) * size
    result = await db.execute(
        select(Odontogram)
        .where(*filters)
        .order_by(Odontogram.created_at.desc(), Odontogram.version.desc())
        .offset(offset)
        .limit(size)
    )
    odontograms = result.unique().scalars().all()

    return OdontogramListResponse(
        items=[_to_list_item(o) for o in odontograms],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


# ── Creación de versiones ────────────────────────────

async def _deactivate_previous(
    db: AsyncSession, patient_id: UUID, keep_version: int
) -> list[int]:
    result = await db.execute(
        select(Odontogram).where(
            Odontogram.patient_id == patient_id,
            Odontogram.is_active.is_(True),
            Odontogram.version != keep_version,
        )
    )
    archived = []
    for previous in result.unique().scalars().all():
        previous.is_active = False
        archived.append(previous.version)
    return sorted(archived)


async def _persist_new_version(
    db: AsyncSession,
    user: User,
    odontogram: Odontogram,
    *,
    deactivate_previous: bool,
    action: str,
    extra: dict | None = None,
    ip_address: str | None = None,
) -> OdontogramResponse:
    db.add(odontogram)
    await flush_or_conflict(db)

    archived: list[int] = []
    if deactivate_previous:
        archived = await _deactivate_previous(db, odontogram.patient_id, odontogram.version)
        await flush_or_conflict(db)

    await log_action(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        entity="odontogram",
        entity_id=str(odontogram.id),
        action=action,
        new_data={
            "patient_id": odontogram.patient_id,
            "version": odontogram.version,
            "archived_versions": archived,
            **(extra or {}),
        },
        ip_address=ip_address,
    )
    logger.info(
        "Odontograma v%s creado para paciente %s por %s (archivadas: %s)",
        odontogram.version, odontogram.patient_id, user.id, archived or "-",
    )

    odontogram = await load_odontogram(db, user.clinic_id, odontogram.id, refresh=True)
    return odontogram_to_response(odontogram)


async def create_odontogram(
    db: AsyncSession,
    user: User,
    data: OdontogramCreate,
    ip_address: str | None = None,
) -> OdontogramResponse:
    """
    Crea una nueva versión del odontograma del paciente.
    Sin dientes explícitos se inicializan los 32 sanos. Las versiones
    anteriores sólo se archivan si se pide con deactivate_previous.
    """
    patient = await lock_patient(db, user.clinic_id, data.patient_id)

    teeth: list[ToothRecord] = []
    if data.teeth is not None:
        for tooth_in in data.teeth:
            validate_tooth_number(tooth_in.number)
        teeth = [_tooth_from_input(t) for t in data.teeth]
        validate_full_dentition(teeth)

    version = await next_version(db, patient.id, data.version)

    odontogram = Odontogram(
        clinic_id=user.clinic_id,
        patient_id=patient.id,
        doctor_id=user.id,
        version=version,
        is_active=True,
        periodontal_chart=data.periodontal_chart.model_dump(mode="json"),
        exam_notes=data.exam_notes,
        teeth=teeth,
        treatment_plan=[],
        completed_treatments=[],
    )
    initialize_teeth(odontogram)

    return await _persist_new_version(
        db,
        user,
        odontogram,
        deactivate_previous=data.deactivate_previous,
        action="create",
        extra={"initialized_default_teeth": data.teeth is None},
        ip_address=ip_address,
    )


async def revise_odontogram(
    db: AsyncSession,
    user: User,
    patient_id: UUID,
    data: OdontogramRevision,
    ip_address: str | None = None,
) -> OdontogramResponse:
    """
    Genera la versión siguiente copiando los dientes de la versión de
    origen y aplicando los cambios indicados. La versión de origen no
    se modifica y el plan de tratamiento no se copia.
    """
    patient = await lock_patient(db, user.clinic_id, patient_id)

    if data.base_version is not None:
        base = await load_version(db, user.clinic_id, patient.id, data.base_version)
    else:
        base = await load_current(db, user.clinic_id, patient.id)

    patched_numbers = [validate_tooth_number(p.number) for p in data.teeth]
    duplicates = sorted({n for n in patched_numbers if patched_numbers.count(n) > 1})
    if duplicates:
        raise ValidationException(f"Dientes repetidos en la revisión: {duplicates}")

    teeth = [t.clone() for t in base.teeth]
    by_number = {t.number: t for t in teeth}
    for patch in data.teeth:
        _apply_patch(by_number[patch.number], patch)
    validate_full_dentition(teeth)

    periodontal = (
        data.periodontal_chart.model_dump(mode="json")
        if data.periodontal_chart is not None
        else copy.deepcopy(base.periodontal_chart)
    )
    version = await next_version(db, patient.id)

    odontogram = Odontogram(
        clinic_id=user.clinic_id,
        patient_id=patient.id,
        doctor_id=user.id,
        version=version,
        is_active=True,
        periodontal_chart=periodontal,
        exam_notes=data.exam_notes,
        teeth=teeth,
        treatment_plan=[],
        completed_treatments=[],
    )

    return await _persist_new_version(
        db,
        user,
        odontogram,
        deactivate_previous=data.deactivate_previous,
        action="revise",
        extra={"base_version": base.version, "patched_teeth": patched_numbers},
        ip_address=ip_address,
    )


# ── Archivado ────────────────────────────────────────

async def set_active(
    db: AsyncSession,
    user: User,
    odontogram_id: UUID,
    active: bool,
    ip_address: str | None = None,
) -> OdontogramResponse:
    """Archiva (active=False) o reactiva una versión. Nunca se elimina."""
    odontogram = await load_locked(db, user.clinic_id, odontogram_id)

    if odontogram.is_active == active:
        return odontogram_to_response(odontogram)

    odontogram.is_active = active
    await flush_or_conflict(db)

    action = "activate" if active else "archive"
    await log_action(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        entity="odontogram",
        entity_id=str(odontogram.id),
        action=action,
        old_data={"is_active": not active},
        new_data={"is_active": active, "version": odontogram.version},
        ip_address=ip_address,
    )
    logger.info(
        "Odontograma v%s del paciente %s %s",
        odontogram.version, odontogram.patient_id,
        "reactivado" if active else "archivado",
    )
    return odontogram_to_response(odontogram)


# ── Resumen clínico ──────────────────────────────────

def summarize_teeth(odontogram: Odontogram) -> ChartSummary:
    """
    Conteos descriptivos sobre los dientes. El estado periodontal general
    se devuelve tal como lo registró el doctor; no se deriva.
    """
    surface_conditions = {condition: 0 for condition in SurfaceCondition}
    affected, caries, missing, mobile = [], [], [], []
    depths: list[float] = []

    for tooth in odontogram.teeth:
        conditions = [s["condition"] for s in tooth.surfaces.values()]
        for condition in conditions:
            surface_conditions[SurfaceCondition(condition)] += 1
        if tooth.is_affected:
            affected.append(tooth.number)
        if SurfaceCondition.CARIES.value in conditions:
            caries.append(tooth.number)
        if all(c == SurfaceCondition.MISSING.value for c in conditions):
            missing.append(tooth.number)
        if tooth.mobility > 0:
            mobile.append(tooth.number)
        if tooth.pocket_depth:
            depths.extend(d for d in tooth.pocket_depth.values() if d is not None)

    total = len(odontogram.teeth) or 1
    bleeding = sum(1 for t in odontogram.teeth if t.bleeding)
    plaque = sum(1 for t in odontogram.teeth if t.plaque)

    return ChartSummary(
        odontogram_id=odontogram.id,
        version=odontogram.version,
        surface_conditions=surface_conditions,
        teeth_affected=affected,
        teeth_with_caries=caries,
        missing_teeth=missing,
        mobile_teeth=mobile,
        bleeding_teeth=bleeding,
        plaque_teeth=plaque,
        bleeding_percentage=round(bleeding / total * 100, 1),
        plaque_percentage=round(plaque / total * 100, 1),
        max_pocket_depth=max(depths) if depths else None,
        mean_pocket_depth=round(sum(depths) / len(depths), 2) if depths else None,
        overall_health=odontogram.periodontal_chart.get("overall_health", "good"),
    )


async def get_summary(
    db: AsyncSession, clinic_id: UUID, odontogram_id: UUID
) -> ChartSummary:
    return summarize_teeth(await load_odontogram(db, clinic_id, odontogram_id))
