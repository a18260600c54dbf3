import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from smiley_console.dependencies import get_api_key, get_clinic_session
from smiley_console.model import CompletionRequest, SettlementFilter, SettlementPreview
from smiley_console.services.clinic_api import ClinicSession
from smiley_console.services.catalog import load_price_map
from smiley_console.services.completion import apply_completion, completion_error
from smiley_console.services.exports import XLSX_MEDIA_TYPE, content_disposition, history_workbook, settlement_workbook
from smiley_console.services.settlement import (
    fetch_records,
    list_settlements,
    prepare_settlement,
    record_settlement,
    summarize_batch,
)

router = APIRouter(tags=["Settlement"], dependencies=[Depends(get_api_key)])
console = logging.getLogger("smiley.settlement")


def _xlsx(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": content_disposition(filename)},
    )


@router.post("/settlements/preview", response_model=SettlementPreview)
async def preview_settlement(
    filtro: SettlementFilter,
    session: ClinicSession = Depends(get_clinic_session),
):
    if filtro.fecha_inicio > filtro.fecha_fin:
        raise HTTPException(status_code=400, detail="La fecha de inicio no puede ser posterior a la fecha final.")
    preview, _ = await prepare_settlement(session, filtro, session.selected_sede)
    return preview


@router.post("/settlements")
async def settle(
    filtro: SettlementFilter,
    session: ClinicSession = Depends(get_clinic_session),
):
    if filtro.fecha_inicio > filtro.fecha_fin:
        raise HTTPException(status_code=400, detail="La fecha de inicio no puede ser posterior a la fecha final.")
    preview, records = await prepare_settlement(session, filtro, session.selected_sede)
    batch, remaining = await record_settlement(session, preview, records, session.selected_sede)
    return {
        "liquidacion": summarize_batch(batch),
        "pendientes": preview.pendientes,
        "registros_restantes": remaining,
    }


@router.post("/settlements/complete")
async def complete_pending(
    request: CompletionRequest,
    session: ClinicSession = Depends(get_clinic_session),
):
    records = await fetch_records(session, session.selected_sede)
    wanted = set(request.record_ids)
    group = [r for r in records if r.id in wanted]
    if len(group) != len(wanted):
        missing = sorted(wanted - {r.id for r in group})
        raise HTTPException(status_code=404, detail=f"Registros no encontrados: {', '.join(missing)}")

    price_map = await load_price_map(session, session.selected_sede)
    error = completion_error(group, price_map.get(group[0].servicio))
    if error:
        raise HTTPException(status_code=400, detail=error)

    return await apply_completion(session, group, request.metodo_pago, session.selected_sede, request.fecha_final)


@router.get("/settlements/history")
async def settlement_history(
    doctor: Optional[str] = None,
    session: ClinicSession = Depends(get_clinic_session),
):
    batches = await list_settlements(session)
    summaries = [
        {"id": b.get("id"), **summarize_batch(b)}
        for b in batches
        if not doctor or b.get("doctor") == doctor
    ]
    return {"count": len(summaries), "liquidaciones": summaries}


@router.post("/settlements/preview/export")
async def export_preview(
    filtro: SettlementFilter,
    session: ClinicSession = Depends(get_clinic_session),
):
    preview, _ = await prepare_settlement(session, filtro, session.selected_sede)
    if not preview.completados:
        raise HTTPException(status_code=400, detail="No hay servicios listos para liquidar.")
    content, filename = settlement_workbook(preview)
    return _xlsx(content, filename)


@router.get("/settlements/{batch_id}/export")
async def export_batch(
    batch_id: int,
    session: ClinicSession = Depends(get_clinic_session),
):
    batches = await list_settlements(session)
    batch = next((b for b in batches if b.get("id") == batch_id), None)
    if batch is None:
        raise HTTPException(status_code=404, detail="Liquidación no encontrada")
    content, filename = history_workbook(summarize_batch(batch))
    console.info("Exported settlement batch %s", batch_id)
    return _xlsx(content, filename)
