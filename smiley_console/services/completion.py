import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from smiley_console.model import ServiceDefinition, TreatmentRecord
from smiley_console.policy_loader import cash_payment_method
from smiley_console.services import clinic_api
from smiley_console.services.clinic_api import ClinicAPIError, ClinicSession, ensure_success
from smiley_console.services.settlement import group_key, is_group_completed

console = logging.getLogger("smiley.completion")


def completion_error(group: List[TreatmentRecord], service: Optional[ServiceDefinition] = None) -> Optional[str]:
    """Only one open (patient, service) treatment can be completed at a time."""
    if len({group_key(r) for r in group}) > 1:
        return "Los registros seleccionados pertenecen a tratamientos distintos."
    if is_group_completed(group, service):
        return "Este tratamiento ya está completado."
    return None


def complete_group(
    group: List[TreatmentRecord],
    metodo_pago: str,
    fecha_final: Optional[date] = None,
) -> Tuple[List[TreatmentRecord], Decimal]:
    """
    Mark every session of a treatment as finished and settle its balance.

    Returns the updated records and the amount that entered the cash drawer
    (the settled balance when paid in cash, otherwise 0).
    """
    fecha_final = fecha_final or date.today()
    updated = []
    settled = Decimal("0")
    for record in group:
        balance = Decimal(str(record.valor_liquidado or 0))
        settled += balance
        updated.append(record.model_copy(update={
            "fecha_final": fecha_final,
            "valor_pagado": float(Decimal(str(record.valor_pagado or 0)) + balance),
            "valor_liquidado": 0,
            "metodo_pago": metodo_pago,
        }))

    cash_delta = settled if metodo_pago == cash_payment_method() else Decimal("0")
    return updated, cash_delta


async def apply_completion(
    session: ClinicSession,
    group: List[TreatmentRecord],
    metodo_pago: str,
    id_sede: Optional[int],
    fecha_final: Optional[date] = None,
) -> dict:
    updated, cash_delta = complete_group(group, metodo_pago, fecha_final)
    if cash_delta > 0 and id_sede is None:
        raise ClinicAPIError(400, "No se ha seleccionado una sede. Por favor, selecciónala.")

    saved = []
    for record in updated:
        data = ensure_success(
            await clinic_api.update_resource(session, "records", record.model_dump(mode="json"), item_id=record.id),
            "Error al completar la sesión. Por favor, intenta de nuevo.",
        )
        saved.append(data or record.model_dump(mode="json"))

    caja = None
    if cash_delta > 0:
        caja = ensure_success(
            await clinic_api.apply_cash_delta(session, id_sede, float(cash_delta), uuid.uuid4().hex),
            "Error al actualizar la caja. Por favor, intenta de nuevo.",
        )
        console.info("Cash drawer of sede %s incremented by %s", id_sede, cash_delta)

    return {"registros": saved, "incremento_caja": float(cash_delta), "caja": caja}
