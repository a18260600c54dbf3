from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from smiley_console.dependencies import get_api_key, get_clinic_session, require_sede
from smiley_console.model import CashBase, CashMovement, Expense, ExpenseFilter, ExpenseInput
from smiley_console.policy_loader import get_expense_concepts
from smiley_console.services import clinic_api
from smiley_console.services.clinic_api import ClinicSession, ensure_success
from smiley_console.services.expenses import (
    apply_concept_preset,
    expense_payload,
    filter_expenses,
    merge_responsibles,
    validate_expense,
)
from smiley_console.services.exports import XLSX_MEDIA_TYPE, content_disposition, expenses_workbook

router = APIRouter(tags=["Expenses"], dependencies=[Depends(get_api_key)])


async def _load_expenses(session: ClinicSession, id_sede: int) -> List[Expense]:
    rows = ensure_success(
        await clinic_api.list_resource(session, "expenses", params={"id_sede": id_sede}),
        "Error al cargar los gastos",
    ) or []
    return [Expense(**row) for row in rows]


@router.get("/expenses/concepts")
def expense_concepts():
    return get_expense_concepts()


@router.get("/expenses/responsibles")
async def expense_responsibles(
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    doctors = ensure_success(
        await clinic_api.get_staff_names(session, "doctor", id_sede),
        "Error al cargar los responsables",
    ) or []
    assistants = ensure_success(
        await clinic_api.get_staff_names(session, "assistant", id_sede),
        "Error al cargar los responsables",
    ) or []
    return merge_responsibles(doctors, assistants)


@router.post("/expenses")
async def create_expense(
    gasto: ExpenseInput,
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    if gasto.fecha is None:
        gasto = gasto.model_copy(update={"fecha": date.today()})
    gasto = apply_concept_preset(gasto)
    error = validate_expense(gasto)
    if error:
        raise HTTPException(status_code=400, detail=error)
    return ensure_success(
        await clinic_api.create_resource(session, "expenses", expense_payload(gasto, id_sede)),
        "Error al registrar el gasto",
    )


@router.get("/expenses")
async def list_expenses(
    filtro: ExpenseFilter = Depends(),
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    gastos = filter_expenses(await _load_expenses(session, id_sede), filtro)
    total = round(sum(g.monto for g in gastos), 2)
    return {"count": len(gastos), "total": total, "gastos": gastos}


@router.get("/expenses/export")
async def export_expenses(
    filtro: ExpenseFilter = Depends(),
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    gastos = filter_expenses(await _load_expenses(session, id_sede), filtro)
    if not gastos:
        raise HTTPException(status_code=400, detail="No hay gastos para exportar.")
    content, filename = expenses_workbook(gastos)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": content_disposition(filename)},
    )


# --- cash drawer ---

@router.get("/cash")
async def get_cash(
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    return ensure_success(await clinic_api.get_cash_base(session, id_sede), "Error al cargar la caja")


@router.put("/cash")
async def set_cash(
    base: CashBase,
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    return ensure_success(await clinic_api.set_cash_base(session, id_sede, base.monto), "Error al actualizar la caja")


@router.post("/cash/movements")
async def move_cash(
    movement: CashMovement,
    id_sede: int = Depends(require_sede),
    session: ClinicSession = Depends(get_clinic_session),
):
    if movement.delta == 0:
        raise HTTPException(status_code=400, detail="El movimiento de caja no puede ser cero.")
    return ensure_success(
        await clinic_api.apply_cash_delta(session, id_sede, movement.delta, movement.referencia),
        "Error al actualizar la caja",
    )
