from datetime import date
from typing import Iterable, List, Optional

from smiley_console.model import TreatmentRecord, TreatmentRecordInput


def initial_balance(valor_total: float, descuento: float, abono: float) -> float:
    """Remaining balance of a freshly registered treatment record."""
    return max(0.0, float(valor_total or 0) - float(descuento or 0) - float(abono or 0))


def validate_record(registro: TreatmentRecordInput) -> Optional[str]:
    if not (registro.nombre_doctor or registro.nombre_asistente):
        return "Selecciona un doctor o auxiliar para el registro."
    if registro.descuento > registro.valor_total:
        return "El descuento no puede superar el valor total del servicio."
    return None


def new_record_payload(registro: TreatmentRecordInput, id_sede: int) -> dict:
    payload = registro.model_dump(mode="json")
    payload.update(
        valor_liquidado=initial_balance(registro.valor_total, registro.descuento, registro.abono),
        valor_pagado=registro.abono,
        id_sede=id_sede,
    )
    return payload


def records_on(records: Iterable[TreatmentRecord], fecha: Optional[date]) -> List[TreatmentRecord]:
    if fecha is None:
        return list(records)
    return [r for r in records if r.fecha == fecha]
