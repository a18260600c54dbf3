import json
from datetime import date
from decimal import Decimal

import pytest
from httpx import Response

from smiley_console.model import Role, ServiceDefinition, SettlementFilter, TreatmentRecord
from smiley_console.services.clinic_api import ClinicAPIError
from smiley_console.services.settlement import (
    _parse_percentage,
    build_preview,
    calculate_group,
    classify_groups,
    filter_records,
    group_records,
    is_group_completed,
    record_settlement,
    resolve_doctor_percentage,
    summarize_batch,
)

PRICES = {
    "Ortodoncia": ServiceDefinition(nombre="Ortodoncia", precio=100000, sesiones=2),
    "Limpieza": ServiceDefinition(nombre="Limpieza", precio=80000, sesiones=1),
}


def make_record(id, paciente="Ana Gómez", servicio="Ortodoncia", sesiones=1, fecha="2024-05-02",
                fecha_final="2024-05-02", valor_liquidado=0, valor_pagado=0, doctor="Dr. Pérez",
                asistente=None, propio=False, id_porc=None, metodo_pago="Efectivo"):
    return TreatmentRecord(
        id=id,
        nombre_paciente=paciente,
        servicio=servicio,
        sesiones=sesiones,
        fecha=fecha,
        fecha_final=fecha_final,
        valor_liquidado=valor_liquidado,
        valor_pagado=valor_pagado,
        nombre_doctor=doctor,
        nombre_asistente=asistente,
        es_paciente_propio=propio,
        id_porc=id_porc,
        metodo_pago=metodo_pago,
    )


def may_filter(**kwargs):
    params = dict(profesional="Dr. Pérez", fecha_inicio=date(2024, 5, 1), fecha_fin=date(2024, 5, 31))
    params.update(kwargs)
    return SettlementFilter(**params)


def settlement_records():
    return [
        make_record("1", sesiones=2, valor_pagado=100000, id_porc=2),
        make_record("2", sesiones=2, fecha="2024-05-09", fecha_final="2024-05-09", valor_pagado=100000,
                    id_porc=2, metodo_pago="Transferencia"),
        make_record("3", paciente="Carlos Ruiz", servicio="Limpieza", valor_pagado=80000),
        make_record("4", paciente="Luis Mora", servicio="Limpieza", fecha_final=None, valor_liquidado=20000),
    ]


# --- grouping ---

def test_grouping_is_partition():
    records = [
        make_record("1"),
        make_record("2", servicio="Limpieza"),
        make_record("3", paciente="Carlos Ruiz"),
        make_record("4"),
        make_record("5", paciente="Carlos Ruiz", servicio="Limpieza"),
    ]
    groups = group_records(records)

    ids = [r.id for g in groups.values() for r in g]
    assert sorted(ids) == ["1", "2", "3", "4", "5"]
    assert len(ids) == len(set(ids))
    assert list(groups) == [
        "Ana Gómez-Ortodoncia", "Ana Gómez-Limpieza", "Carlos Ruiz-Ortodoncia", "Carlos Ruiz-Limpieza",
    ]
    assert [r.id for r in groups["Ana Gómez-Ortodoncia"]] == ["1", "4"]


def test_filter_records_inclusive_range_and_role():
    records = [
        make_record("1", fecha="2024-05-01"),
        make_record("2", fecha="2024-05-31"),
        make_record("3", fecha="2024-06-01"),
        make_record("4", doctor="Dra. Silva"),
        make_record("5", doctor=None, asistente="Dr. Pérez"),
    ]
    selected = filter_records(records, "Dr. Pérez", date(2024, 5, 1), date(2024, 5, 31))
    assert [r.id for r in selected] == ["1", "2"]

    as_assistant = filter_records(records, "Dr. Pérez", date(2024, 5, 1), date(2024, 5, 31), is_assistant=True)
    assert [r.id for r in as_assistant] == ["5"]


def test_filter_records_by_patient_and_service():
    records = settlement_records()
    selected = filter_records(records, "Dr. Pérez", date(2024, 5, 1), date(2024, 5, 31), servicio="Limpieza")
    assert [r.id for r in selected] == ["3", "4"]
    selected = filter_records(records, "Dr. Pérez", date(2024, 5, 1), date(2024, 5, 31), paciente="Luis Mora")
    assert [r.id for r in selected] == ["4"]


# --- classifier ---

def test_dated_and_paid_group_is_completed():
    assert is_group_completed([make_record("1", sesiones=2), make_record("2", sesiones=2)])


def test_group_with_balance_is_pending():
    assert not is_group_completed([make_record("1", valor_liquidado=5000)])


def test_multi_session_paid_undated_group_is_completed():
    group = [
        make_record("1", sesiones=3, fecha_final=None),
        make_record("2", sesiones=3, fecha_final=None),
    ]
    assert is_group_completed(group)


def test_single_session_paid_undated_group_stays_pending():
    # current classification; changing it must be a deliberate decision
    assert not is_group_completed([make_record("1", sesiones=1, fecha_final=None)])


def test_classify_groups_splits_completed_and_pending():
    completed, pending = classify_groups(group_records(settlement_records()))
    assert list(completed) == ["Ana Gómez-Ortodoncia", "Carlos Ruiz-Limpieza"]
    assert list(pending) == ["Luis Mora-Limpieza"]


def test_catalog_session_count_drives_classification():
    group = [make_record("1", fecha_final=None), make_record("2", fecha_final=None)]
    catalog = {"Ortodoncia": ServiceDefinition(nombre="Ortodoncia", precio=50000, sesiones=3)}

    assert not is_group_completed(group)
    assert is_group_completed(group, catalog["Ortodoncia"])
    completed, pending = classify_groups(group_records(group), catalog)
    assert list(completed) == ["Ana Gómez-Ortodoncia"]
    assert not pending


# --- calculator ---

def test_doctor_tier_two_settlement():
    group = [make_record("1", sesiones=2, id_porc=2), make_record("2", sesiones=2, id_porc=2)]
    result = calculate_group(group, PRICES, {"Ortodoncia": Decimal("10000")})

    assert result.sesiones_completadas == 2
    assert result.total_bruto == 200000
    assert result.total_ajustado == 190000
    assert result.porcentaje == 0.5
    assert result.total_liquidar == 95000


def test_assistant_owned_patient_undated_single_session():
    group = [make_record("1", servicio="Limpieza", fecha_final=None, asistente="Marta", propio=True)]
    result = calculate_group(group, PRICES, {}, is_assistant=True)

    assert result.sesiones_completadas == 1
    assert result.porcentaje == 0.2
    assert result.total_liquidar == 16000


def test_assistant_clinic_patient_rate():
    group = [make_record("1", servicio="Limpieza", asistente="Marta", propio=False)]
    result = calculate_group(group, PRICES, {}, is_assistant=True)
    assert result.porcentaje == 0.1
    assert result.total_liquidar == 8000


def test_lab_cost_above_gross_clamps_to_zero():
    group = [make_record("1", servicio="Limpieza")]
    result = calculate_group(group, PRICES, {"Limpieza": Decimal("95000")}, doctor_percentage=Decimal("0.4"))
    assert result.total_ajustado == 0
    assert result.total_liquidar == 0


def test_calculation_is_idempotent():
    group = [make_record("1", sesiones=2, id_porc=2), make_record("2", sesiones=2, id_porc=2)]
    lab_costs = {"Ortodoncia": Decimal("10000")}
    assert calculate_group(group, PRICES, lab_costs) == calculate_group(group, PRICES, lab_costs)


def test_partially_dated_group_counts_records():
    group = [
        make_record("1", sesiones=3),
        make_record("2", sesiones=3, fecha_final=None),
    ]
    result = calculate_group(group, {"Ortodoncia": ServiceDefinition(nombre="Ortodoncia", precio=50000, sesiones=3)},
                             {"Ortodoncia": Decimal("10000")}, doctor_percentage=Decimal("0.4"))
    assert result.sesiones_completadas == 2
    assert result.sesiones_requeridas == 3
    # full lab cost even though one session is still open
    assert result.costo_laboratorio == 10000
    assert result.total_liquidar == 36000


def test_service_missing_from_catalog_settles_at_zero(caplog):
    result = calculate_group([make_record("1", servicio="Blanqueamiento")], PRICES, {}, doctor_percentage=Decimal("0.4"))
    assert result.precio == 0
    assert result.total_liquidar == 0
    assert "Blanqueamiento" in caplog.text


def test_build_preview_totals_and_pending():
    preview = build_preview(
        may_filter(),
        settlement_records(),
        PRICES,
        {"Ortodoncia": Decimal("10000")},
        {2: Decimal("0.5"), None: Decimal("0.4")},
    )

    assert [g.key for g in preview.completados] == ["Ana Gómez-Ortodoncia", "Carlos Ruiz-Limpieza"]
    assert [g.total_liquidar for g in preview.completados] == [95000, 32000]
    assert preview.total_liquidar == 127000
    assert preview.completados[0].metodos_pago == ["Efectivo", "Transferencia"]
    assert preview.completados[0].total_pagado == 200000

    assert len(preview.pendientes) == 1
    assert preview.pendientes[0].saldo_pendiente == 20000
    assert preview.pendientes[0].record_ids == ["4"]


# --- percentage tiers ---

@pytest.mark.parametrize("data, expected", [
    ({"porcentaje": 0.45}, Decimal("0.45")),
    ({"valor": 50}, Decimal("0.5")),
    (0.3, Decimal("0.3")),
    ({"porcentaje": None}, None),
    ({"porcentaje": 150}, None),
])
def test_parse_percentage(data, expected):
    assert _parse_percentage(data) == expected


@pytest.mark.anyio
async def test_resolve_doctor_percentage_from_backend(clinic, backend):
    backend.get("/api/porcentajes/3").mock(return_value=Response(200, json={"porcentaje": 45}))
    assert await resolve_doctor_percentage(clinic, 3) == Decimal("0.45")


@pytest.mark.anyio
async def test_resolve_doctor_percentage_falls_back_to_policy(clinic, backend, caplog):
    backend.get("/api/porcentajes/2").mock(return_value=Response(500, json={"error": "boom"}))
    assert await resolve_doctor_percentage(clinic, 2) == Decimal("0.5")
    assert "unavailable" in caplog.text


# --- recorder and history ---

@pytest.mark.anyio
async def test_recorded_batch_round_trips_through_history(clinic, backend):
    records = settlement_records()
    preview = build_preview(
        may_filter(), records, PRICES, {"Ortodoncia": Decimal("10000")}, {2: Decimal("0.5"), None: Decimal("0.4")},
    )

    def echo(request):
        return Response(201, json={"id": 7, **json.loads(request.content)})

    route = backend.post("/api/liquidations").mock(side_effect=echo)

    batch, remaining = await record_settlement(clinic, preview, records, id_sede=1,
                                               fecha_liquidacion=date(2024, 6, 1))

    assert route.call_count == 1
    sent = json.loads(route.calls.last.request.content)
    assert sent["doctor"] == "Dr. Pérez"
    assert sent["fecha_liquidacion"] == "2024-06-01"
    assert [[r["id"] for r in group] for group in sent["servicios"]] == [["1", "2"], ["3"]]
    assert [r.id for r in remaining] == ["4"]

    summary = summarize_batch(batch)
    assert summary["total_liquidado"] == preview.total_liquidar
    assert [(g["porcentaje"], g["total_liquidar"]) for g in summary["grupos"]] == [
        (g.porcentaje, g.total_liquidar) for g in preview.completados
    ]
    assert summary["grupos"][0]["sesiones_completadas"] == 2
    assert summary["grupos"][0]["sesiones_requeridas"] == 2
    assert summary["grupos"][0]["total_pagado"] == 200000


@pytest.mark.anyio
async def test_history_keeps_catalog_session_count(clinic, backend):
    # records created before the catalog was updated carry the default single session
    records = [
        make_record("1", valor_pagado=100000, id_porc=2),
        make_record("2", fecha="2024-05-09", fecha_final="2024-05-09", valor_pagado=100000, id_porc=2),
    ]
    preview = build_preview(may_filter(), records, PRICES, {}, {2: Decimal("0.5")})
    assert preview.completados[0].sesiones_requeridas == 2

    route = backend.post("/api/liquidations").mock(
        side_effect=lambda request: Response(201, json={"id": 8, **json.loads(request.content)})
    )
    batch, _ = await record_settlement(clinic, preview, records, id_sede=1, fecha_liquidacion=date(2024, 6, 1))

    sent = json.loads(route.calls.last.request.content)
    assert [r["sesiones_requeridas"] for r in sent["servicios"][0]] == [2, 2]
    grupo = summarize_batch(batch)["grupos"][0]
    assert (grupo["sesiones_completadas"], grupo["sesiones_requeridas"]) == (2, 2)


@pytest.mark.anyio
async def test_failed_recording_leaves_records_untouched(clinic, backend):
    records = settlement_records()
    preview = build_preview(may_filter(), records, PRICES, {}, {2: Decimal("0.5"), None: Decimal("0.4")})
    backend.post("/api/liquidations").mock(return_value=Response(500, text="down"))

    with pytest.raises(ClinicAPIError) as exc:
        await record_settlement(clinic, preview, records, id_sede=1)

    assert exc.value.status == 502
    assert [r.id for r in records] == ["1", "2", "3", "4"]


@pytest.mark.anyio
async def test_nothing_to_settle_is_rejected_before_backend(clinic, backend):
    route = backend.post("/api/liquidations").mock(return_value=Response(201, json={}))
    preview = build_preview(may_filter(rol=Role.doctor, profesional="Nadie"), settlement_records(), PRICES, {})

    with pytest.raises(ClinicAPIError) as exc:
        await record_settlement(clinic, preview, settlement_records())

    assert exc.value.status == 400
    assert not route.called
