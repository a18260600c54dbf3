"""
Commission settlement ("liquidación") for doctors and assistants.

Records are grouped by (patient, service) into treatment units, each unit is
classified as ready to settle or pending, and ready units are priced from the
service catalog, reduced by their lab-supply cost and multiplied by the
professional's share. Everything here except the fetch/record helpers at the
bottom is a pure function over already loaded data.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from smiley_console.model import (
    GroupSettlement,
    PendingGroup,
    Role,
    ServiceDefinition,
    SettlementFilter,
    SettlementPreview,
    TreatmentRecord,
)
from smiley_console.policy_loader import assistant_percentage, default_doctor_percentage
from smiley_console.services import clinic_api
from smiley_console.services.catalog import fetch_lab_cost_map, load_price_map
from smiley_console.services.clinic_api import ClinicSession, ensure_success

console = logging.getLogger("smiley.settlement")

CENT = Decimal("0.01")
ZERO = Decimal("0")


def _money(value: Decimal) -> float:
    return float(value.quantize(CENT))


def _dec(value) -> Decimal:
    return Decimal(str(value or 0))


# --- Record Grouper ---

def filter_records(
    records: Iterable[TreatmentRecord],
    profesional: str,
    fecha_inicio: date,
    fecha_fin: date,
    paciente: Optional[str] = None,
    servicio: Optional[str] = None,
    is_assistant: bool = False,
) -> List[TreatmentRecord]:
    def belongs(r: TreatmentRecord) -> bool:
        name = r.nombre_asistente if is_assistant else r.nombre_doctor
        return (
            name == profesional
            and fecha_inicio <= r.fecha <= fecha_fin
            and (not paciente or r.nombre_paciente == paciente)
            and (not servicio or r.servicio == servicio)
        )

    return [r for r in records if belongs(r)]


def group_key(record: TreatmentRecord) -> str:
    return f"{record.nombre_paciente}-{record.servicio}"


def group_records(records: Iterable[TreatmentRecord]) -> Dict[str, List[TreatmentRecord]]:
    groups: Dict[str, List[TreatmentRecord]] = {}
    for record in records:
        groups.setdefault(group_key(record), []).append(record)
    return groups


# --- Completion Classifier ---

def remaining_balance(group: List[TreatmentRecord]) -> Decimal:
    return sum((_dec(r.valor_liquidado) for r in group), ZERO)


def is_group_completed(group: List[TreatmentRecord], service: Optional[ServiceDefinition] = None) -> bool:
    """Ready to settle. The catalog session count, when known, wins over the record's own."""
    required = service.sesiones if service else group[0].sesiones
    all_dated = all(r.fecha_final is not None for r in group)
    paid_off = remaining_balance(group) <= 0

    if all_dated and paid_off:
        return True
    # multi-session treatments fully paid before every session was dated
    if required > 1 and not all_dated and paid_off:
        return True
    return False


def classify_groups(
    groups: Dict[str, List[TreatmentRecord]],
    price_map: Optional[Dict[str, ServiceDefinition]] = None,
) -> Tuple[Dict[str, List[TreatmentRecord]], Dict[str, List[TreatmentRecord]]]:
    completed, pending = {}, {}
    price_map = price_map or {}
    for key, group in groups.items():
        (completed if is_group_completed(group, price_map.get(group[0].servicio)) else pending)[key] = group
    return completed, pending


# --- Settlement Calculator ---

def sessions_completed(group: List[TreatmentRecord], service: Optional[ServiceDefinition] = None) -> int:
    if all(r.fecha_final is not None for r in group):
        return service.sesiones if service else group[0].sesiones
    return len(group)


def percentage_for(group: List[TreatmentRecord], is_assistant: bool, doctor_percentage: Optional[Decimal] = None) -> Decimal:
    if is_assistant:
        return assistant_percentage(group[0].es_paciente_propio)
    if doctor_percentage is None:
        return default_doctor_percentage(group[0].id_porc)
    return doctor_percentage


def calculate_group(
    group: List[TreatmentRecord],
    price_map: Dict[str, ServiceDefinition],
    lab_costs: Dict[str, Decimal],
    is_assistant: bool = False,
    doctor_percentage: Optional[Decimal] = None,
) -> GroupSettlement:
    first = group[0]
    service = price_map.get(first.servicio)
    if service is None:
        console.warning("Service %s not in catalog, settling at price 0", first.servicio)

    price = _dec(service.precio) if service else ZERO
    done = sessions_completed(group, service)
    gross = price * done
    lab_cost = _dec(lab_costs.get(first.servicio, ZERO))
    adjusted = max(ZERO, gross - lab_cost)
    pct = percentage_for(group, is_assistant, doctor_percentage)
    payable = adjusted * pct

    return GroupSettlement(
        key=group_key(first),
        paciente=first.nombre_paciente,
        servicio=first.servicio,
        sesiones_completadas=done,
        sesiones_requeridas=service.sesiones if service else first.sesiones,
        precio=_money(price),
        total_bruto=_money(gross),
        total_pagado=_money(sum((_dec(r.valor_pagado) for r in group), ZERO)),
        costo_laboratorio=_money(lab_cost),
        total_ajustado=_money(adjusted),
        porcentaje=float(pct),
        total_liquidar=_money(payable),
        es_paciente_propio=first.es_paciente_propio,
        metodos_pago=list(dict.fromkeys(r.metodo_pago for r in group if r.metodo_pago)),
        record_ids=[r.id for r in group if r.id is not None],
    )


def summarize_pending(key: str, group: List[TreatmentRecord], service: Optional[ServiceDefinition] = None) -> PendingGroup:
    first = group[0]
    return PendingGroup(
        key=key,
        paciente=first.nombre_paciente,
        servicio=first.servicio,
        sesiones_completadas=sum(1 for r in group if r.fecha_final is not None),
        sesiones_requeridas=service.sesiones if service else first.sesiones,
        saldo_pendiente=_money(remaining_balance(group)),
        record_ids=[r.id for r in group if r.id is not None],
    )


def build_preview(
    filtro: SettlementFilter,
    records: Iterable[TreatmentRecord],
    price_map: Dict[str, ServiceDefinition],
    lab_costs: Dict[str, Decimal],
    doctor_percentages: Optional[Dict[Optional[int], Decimal]] = None,
) -> SettlementPreview:
    is_assistant = filtro.rol == Role.assistant
    selected = filter_records(
        records, filtro.profesional, filtro.fecha_inicio, filtro.fecha_fin,
        filtro.paciente, filtro.servicio, is_assistant=is_assistant,
    )
    completed, pending = classify_groups(group_records(selected), price_map)
    doctor_percentages = doctor_percentages or {}

    results = [
        calculate_group(
            group, price_map, lab_costs, is_assistant,
            None if is_assistant else doctor_percentages.get(group[0].id_porc),
        )
        for group in completed.values()
    ]
    total = sum((Decimal(str(r.total_liquidar)) for r in results), ZERO)

    return SettlementPreview(
        profesional=filtro.profesional,
        rol=filtro.rol,
        fecha_inicio=filtro.fecha_inicio,
        fecha_fin=filtro.fecha_fin,
        completados=results,
        pendientes=[summarize_pending(k, g, price_map.get(g[0].servicio)) for k, g in pending.items()],
        total_liquidar=_money(total),
    )


# --- backend-facing helpers ---

def _parse_percentage(data) -> Optional[Decimal]:
    if isinstance(data, dict):
        data = next((data[k] for k in ("porcentaje", "valor", "value") if data.get(k) is not None), None)
    if data is None:
        return None
    value = Decimal(str(data))
    if value > 1:
        value = value / 100
    if value < 0 or value > 1:
        return None
    return value


async def resolve_doctor_percentage(session: ClinicSession, tier_id: Optional[int]) -> Decimal:
    """Tier share as a fraction; the policy default stands in when the lookup fails."""
    if tier_id is None:
        return default_doctor_percentage(tier_id)

    result = await clinic_api.get_percentage(session, tier_id)
    value = None
    if result.get("success"):
        try:
            value = _parse_percentage(result.get("data"))
        except (ArithmeticError, ValueError, TypeError):
            value = None
    if value is None:
        fallback = default_doctor_percentage(tier_id)
        console.warning("Percentage tier %s unavailable, using default %s", tier_id, fallback)
        return fallback
    return value


async def fetch_records(session: ClinicSession, id_sede: Optional[int] = None) -> List[TreatmentRecord]:
    rows = ensure_success(
        await clinic_api.list_records(session, id_sede),
        "Error al cargar los registros. Por favor, intenta de nuevo.",
    ) or []
    return [TreatmentRecord(**row) for row in rows]


async def prepare_settlement(
    session: ClinicSession,
    filtro: SettlementFilter,
    id_sede: Optional[int] = None,
    records: Optional[List[TreatmentRecord]] = None,
) -> Tuple[SettlementPreview, List[TreatmentRecord]]:
    """Load everything the calculation needs and compute the preview."""
    if records is None:
        records = await fetch_records(session, id_sede)
    price_map = await load_price_map(session, id_sede)

    is_assistant = filtro.rol == Role.assistant
    selected = filter_records(
        records, filtro.profesional, filtro.fecha_inicio, filtro.fecha_fin,
        filtro.paciente, filtro.servicio, is_assistant=is_assistant,
    )
    completed, _ = classify_groups(group_records(selected), price_map)
    lab_costs = await fetch_lab_cost_map(session, (g[0].servicio for g in completed.values()))

    doctor_percentages: Dict[Optional[int], Decimal] = {}
    if not is_assistant:
        for tier_id in dict.fromkeys(g[0].id_porc for g in completed.values()):
            doctor_percentages[tier_id] = await resolve_doctor_percentage(session, tier_id)

    preview = build_preview(filtro, records, price_map, lab_costs, doctor_percentages)
    return preview, records


def batch_payload(
    preview: SettlementPreview,
    records: Iterable[TreatmentRecord],
    id_sede: Optional[int] = None,
    fecha_liquidacion: Optional[date] = None,
) -> dict:
    by_id = {r.id: r for r in records}
    servicios = []
    for result in preview.completados:
        group = []
        for record_id in result.record_ids:
            row = by_id[record_id].model_dump(mode="json")
            row.update(
                porcentaje=result.porcentaje,
                sesiones_completadas=result.sesiones_completadas,
                sesiones_requeridas=result.sesiones_requeridas,
                costo_laboratorio=result.costo_laboratorio,
                total_liquidar=result.total_liquidar,
            )
            group.append(row)
        servicios.append(group)

    return {
        "doctor": preview.profesional,
        "rol": preview.rol.value,
        "fecha_inicio": preview.fecha_inicio.isoformat(),
        "fecha_fin": preview.fecha_fin.isoformat(),
        "servicios": servicios,
        "total_liquidado": preview.total_liquidar,
        "fecha_liquidacion": (fecha_liquidacion or date.today()).isoformat(),
        "id_sede": id_sede,
    }


async def record_settlement(
    session: ClinicSession,
    preview: SettlementPreview,
    records: List[TreatmentRecord],
    id_sede: Optional[int] = None,
    fecha_liquidacion: Optional[date] = None,
) -> Tuple[dict, List[TreatmentRecord]]:
    """
    Persist one settlement batch and return it with the records still pending.

    Nothing local changes before the backend confirms; on failure ClinicAPIError
    propagates and `records` is left as it was.
    """
    if not preview.completados:
        raise clinic_api.ClinicAPIError(400, "No hay servicios listos para liquidar.")

    payload = batch_payload(preview, records, id_sede, fecha_liquidacion)
    batch = ensure_success(
        await clinic_api.create_resource(session, "settlements", payload),
        "Error al registrar la liquidación. Por favor, intenta de nuevo.",
    )
    settled = {rid for result in preview.completados for rid in result.record_ids}
    remaining = [r for r in records if r.id not in settled]
    console.info(
        "Settlement recorded for %s: %d groups, total %s",
        preview.profesional, len(preview.completados), preview.total_liquidar,
    )
    return batch or payload, remaining


def summarize_batch(batch: dict) -> dict:
    """Per-group breakdown of a recorded batch, read back from the stored fields."""
    groups = []
    for group in batch.get("servicios") or []:
        if not group:
            continue
        first = group[0]
        groups.append({
            "paciente": first.get("nombre_paciente"),
            "servicio": first.get("servicio"),
            "sesiones_completadas": first.get("sesiones_completadas", len(group)),
            "sesiones_requeridas": first.get("sesiones_requeridas", first.get("sesiones")),
            "es_paciente_propio": bool(first.get("es_paciente_propio")),
            "metodos_pago": list(dict.fromkeys(r.get("metodo_pago") for r in group if r.get("metodo_pago"))),
            "total_pagado": float(sum(Decimal(str(r.get("valor_pagado") or 0)) for r in group)),
            "costo_laboratorio": first.get("costo_laboratorio", 0),
            "porcentaje": first.get("porcentaje"),
            "total_liquidar": first.get("total_liquidar", 0),
        })
    return {
        "doctor": batch.get("doctor"),
        "fecha_inicio": batch.get("fecha_inicio"),
        "fecha_fin": batch.get("fecha_fin"),
        "fecha_liquidacion": batch.get("fecha_liquidacion"),
        "grupos": groups,
        "total_liquidado": batch.get("total_liquidado"),
    }


async def list_settlements(session: ClinicSession) -> List[dict]:
    return ensure_success(
        await clinic_api.list_resource(session, "settlements"),
        "Error al cargar el historial de liquidaciones",
    ) or []
