from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from smiley_console.dependencies import get_api_key, get_clinic_session, require_sede
from smiley_console.model import BatchDelete, PatientCredit, TreatmentRecord, TreatmentRecordInput
from smiley_console.services import clinic_api
from smiley_console.services.clinic_api import ClinicSession, ensure_success
from smiley_console.services.records import new_record_payload, records_on, validate_record
from smiley_console.services.settlement import fetch_records

router = APIRouter(tags=["Records"], dependencies=[Depends(get_api_key)])


@router.get("/records")
async def list_records(
    fecha: Optional[date] = None,
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    records = records_on(await fetch_records(session, id_sede), fecha)
    return {"count": len(records), "records": records}


@router.post("/records")
async def create_record(
    registro: TreatmentRecordInput,
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    error = validate_record(registro)
    if error:
        raise HTTPException(status_code=400, detail=error)
    return ensure_success(
        await clinic_api.create_resource(session, "records", new_record_payload(registro, id_sede)),
        "Error al guardar el registro. Por favor, intenta de nuevo.",
    )


@router.put("/records/{record_id}")
async def update_record(
    record_id: str,
    registro: TreatmentRecord,
    session: ClinicSession = Depends(get_clinic_session),
):
    payload = registro.model_dump(mode="json")
    payload["id"] = record_id
    return ensure_success(
        await clinic_api.update_resource(session, "records", payload, item_id=record_id),
        "Error al actualizar el registro. Por favor, intenta de nuevo.",
    )


@router.delete("/records/{record_id}")
async def delete_record(
    record_id: str,
    session: ClinicSession = Depends(get_clinic_session),
):
    ensure_success(
        await clinic_api.delete_resource(session, "records", item_id=record_id),
        "Error al eliminar el registro. Por favor, intenta de nuevo.",
    )
    return {"message": "Registro eliminado", "id": record_id}


@router.post("/records/batch-delete")
async def delete_records(
    body: BatchDelete,
    session: ClinicSession = Depends(get_clinic_session),
):
    ensure_success(
        await clinic_api.delete_records(session, body.ids),
        "Error al eliminar los registros. Por favor, intenta de nuevo.",
    )
    return {"message": "Registros eliminados", "ids": body.ids}


@router.get("/patients")
async def search_patients(
    nombre: str = Query(..., min_length=1),
    session: ClinicSession = Depends(get_clinic_session),
):
    return ensure_success(
        await clinic_api.search_patients(session, nombre),
        "Error al buscar pacientes",
    ) or []


@router.post("/patients/{doc_id}/credit")
async def add_patient_credit(
    doc_id: str,
    credit: PatientCredit,
    session: ClinicSession = Depends(get_clinic_session),
):
    return ensure_success(
        await clinic_api.add_patient_credit(session, doc_id, credit.model_dump()),
        "Error al registrar el crédito del paciente",
    )
