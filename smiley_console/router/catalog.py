from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from smiley_console.dependencies import get_api_key, get_clinic_session
from smiley_console.model import Assistant, Doctor, LabSupplyCost, ServiceDefinition, ServiceUpdate
from smiley_console.services import clinic_api
from smiley_console.services.catalog import sum_lab_costs, validate_lab_cost, validate_service
from smiley_console.services.clinic_api import ClinicSession, ensure_success

router = APIRouter(tags=["Catalog"], dependencies=[Depends(get_api_key)])

CatalogName = Literal["default", "estadio"]
SimpleResource = Literal["accounts", "payment_methods", "sedes"]


def _catalog_resource(catalogo: str) -> str:
    return "stadium_services" if catalogo == "estadio" else "services"


# --- staff ---

@router.get("/staff/doctors")
async def list_doctors(session: ClinicSession = Depends(get_clinic_session)):
    return ensure_success(await clinic_api.list_resource(session, "doctors"), "No se pudo cargar la información.")


@router.post("/staff/doctors")
async def create_doctor(doctor: Doctor, session: ClinicSession = Depends(get_clinic_session)):
    payload = doctor.model_dump(exclude={"id"})
    return ensure_success(await clinic_api.create_resource(session, "doctors", payload), "No se pudo guardar la información.")


@router.put("/staff/doctors/{doctor_id}")
async def update_doctor(doctor_id: int, doctor: Doctor, session: ClinicSession = Depends(get_clinic_session)):
    payload = doctor.model_dump(exclude={"id"})
    return ensure_success(
        await clinic_api.update_resource(session, "doctors", payload, item_id=doctor_id),
        "No se pudo guardar la información.",
    )


@router.delete("/staff/doctors/{doctor_id}")
async def delete_doctor(doctor_id: int, session: ClinicSession = Depends(get_clinic_session)):
    ensure_success(await clinic_api.delete_resource(session, "doctors", item_id=doctor_id), "No se pudo eliminar.")
    return {"message": "Doctor eliminado correctamente.", "id": doctor_id}


@router.get("/staff/assistants")
async def list_assistants(session: ClinicSession = Depends(get_clinic_session)):
    return ensure_success(await clinic_api.list_resource(session, "assistants"), "No se pudo cargar la información.")


@router.post("/staff/assistants")
async def create_assistant(assistant: Assistant, session: ClinicSession = Depends(get_clinic_session)):
    payload = assistant.model_dump(exclude={"id"})
    return ensure_success(await clinic_api.create_resource(session, "assistants", payload), "No se pudo guardar la información.")


@router.put("/staff/assistants/{assistant_id}")
async def update_assistant(assistant_id: int, assistant: Assistant, session: ClinicSession = Depends(get_clinic_session)):
    payload = assistant.model_dump(exclude={"id"})
    return ensure_success(
        await clinic_api.update_resource(session, "assistants", payload, item_id=assistant_id),
        "No se pudo guardar la información.",
    )


@router.delete("/staff/assistants/{assistant_id}")
async def delete_assistant(assistant_id: int, session: ClinicSession = Depends(get_clinic_session)):
    ensure_success(await clinic_api.delete_resource(session, "assistants", item_id=assistant_id), "No se pudo eliminar.")
    return {"message": "Auxiliar eliminado correctamente.", "id": assistant_id}


# --- service catalogs ---

async def _existing_services(session: ClinicSession, catalogo: str):
    rows = ensure_success(
        await clinic_api.list_resource(session, _catalog_resource(catalogo)),
        "Error al cargar los servicios",
    ) or []
    return [ServiceDefinition(**row) for row in rows]


@router.get("/services")
async def list_services(
    catalogo: CatalogName = "default",
    session: ClinicSession = Depends(get_clinic_session),
):
    services = await _existing_services(session, catalogo)
    return {"count": len(services), "services": services}


@router.post("/services")
async def create_service(
    service: ServiceDefinition,
    catalogo: CatalogName = "default",
    session: ClinicSession = Depends(get_clinic_session),
):
    error = validate_service(service, await _existing_services(session, catalogo))
    if error:
        raise HTTPException(status_code=400, detail=error)
    return ensure_success(
        await clinic_api.create_resource(session, _catalog_resource(catalogo), service.model_dump()),
        "Error al añadir el servicio. Por favor, intenta de nuevo.",
    )


@router.put("/services")
async def update_service(
    service: ServiceUpdate,
    catalogo: CatalogName = "default",
    session: ClinicSession = Depends(get_clinic_session),
):
    error = validate_service(service, await _existing_services(session, catalogo), original_name=service.nombre_original)
    if error:
        raise HTTPException(status_code=400, detail=error)
    payload = {
        "nombreOriginal": service.nombre_original,
        "nombre": service.nombre,
        "precio": service.precio,
        "sesiones": service.sesiones or 1,
        "descripcion": service.descripcion or "",
    }
    return ensure_success(
        await clinic_api.update_resource(session, _catalog_resource(catalogo), payload),
        "Error al guardar los cambios. Por favor, intenta de nuevo.",
    )


@router.delete("/services")
async def delete_service(
    nombre: str = Query(..., min_length=1),
    catalogo: CatalogName = "default",
    session: ClinicSession = Depends(get_clinic_session),
):
    ensure_success(
        await clinic_api.delete_resource(session, _catalog_resource(catalogo), body={"nombre": nombre}),
        "Error al eliminar el servicio. Por favor, intenta de nuevo.",
    )
    return {"message": "Servicio eliminado", "nombre": nombre}


# --- lab supply costs ---

@router.get("/lab-costs")
async def list_lab_costs(
    servicio: str = Query(..., min_length=1),
    session: ClinicSession = Depends(get_clinic_session),
):
    rows = ensure_success(
        await clinic_api.get_lab_costs(session, servicio),
        "Error al cargar los costos de laboratorio",
    ) or []
    items = [LabSupplyCost(**row) for row in rows]
    total = sum_lab_costs(items).get(servicio, 0)
    return {"servicio": servicio, "items": items, "total": float(total)}


@router.post("/lab-costs")
async def create_lab_cost(row: LabSupplyCost, session: ClinicSession = Depends(get_clinic_session)):
    error = validate_lab_cost(row)
    if error:
        raise HTTPException(status_code=400, detail=error)
    return ensure_success(
        await clinic_api.create_resource(session, "lab_costs", row.model_dump(exclude={"id_laboratorio"})),
        "Error al agregar el insumo de laboratorio",
    )


@router.put("/lab-costs/{id_laboratorio}")
async def update_lab_cost(
    id_laboratorio: int,
    row: LabSupplyCost,
    session: ClinicSession = Depends(get_clinic_session),
):
    error = validate_lab_cost(row)
    if error:
        raise HTTPException(status_code=400, detail=error)
    payload = {
        "id_laboratorio": id_laboratorio,
        "nombre_insumo": row.nombre_insumo,
        "costo": row.costo,
        "descripcion": row.descripcion,
    }
    return ensure_success(
        await clinic_api.update_resource(session, "lab_costs", payload),
        "Error al actualizar el insumo de laboratorio",
    )


@router.delete("/lab-costs/{id_laboratorio}")
async def delete_lab_cost(id_laboratorio: int, session: ClinicSession = Depends(get_clinic_session)):
    ensure_success(
        await clinic_api.delete_resource(session, "lab_costs", body={"id_laboratorio": id_laboratorio}),
        "Error al eliminar el insumo de laboratorio",
    )
    return {"message": "Insumo de laboratorio eliminado correctamente", "id_laboratorio": id_laboratorio}


# --- accounts, payment methods, locations ---

@router.get("/catalog/{resource}")
async def list_simple(resource: SimpleResource, session: ClinicSession = Depends(get_clinic_session)):
    return ensure_success(await clinic_api.list_resource(session, resource), "Error al cargar los datos.")


@router.post("/catalog/{resource}")
async def create_simple(
    resource: SimpleResource,
    payload: Dict[str, Any],
    session: ClinicSession = Depends(get_clinic_session),
):
    return ensure_success(await clinic_api.create_resource(session, resource, payload), "Error al guardar los datos.")


@router.put("/catalog/{resource}/{item_id}")
async def update_simple(
    resource: SimpleResource,
    item_id: int,
    payload: Dict[str, Any],
    session: ClinicSession = Depends(get_clinic_session),
):
    return ensure_success(
        await clinic_api.update_resource(session, resource, payload, item_id=item_id),
        "Error al guardar los datos.",
    )


@router.delete("/catalog/{resource}/{item_id}")
async def delete_simple(
    resource: SimpleResource,
    item_id: int,
    session: ClinicSession = Depends(get_clinic_session),
):
    ensure_success(await clinic_api.delete_resource(session, resource, item_id=item_id), "Error al eliminar.")
    return {"message": "Eliminado", "id": item_id}
