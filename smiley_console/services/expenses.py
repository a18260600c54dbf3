from typing import Iterable, List, Optional

from smiley_console.model import Expense, ExpenseFilter, ExpenseInput
from smiley_console.policy_loader import get_expense_concept


def apply_concept_preset(gasto: ExpenseInput) -> ExpenseInput:
    """Fill provider and type from the preset list when the concept is a known one."""
    preset = get_expense_concept(gasto.concepto)
    if not preset:
        return gasto
    return gasto.model_copy(update={
        "proveedor": gasto.proveedor or preset["proveedor"],
        "tipo_gasto": gasto.tipo_gasto or preset["tipo"],
    })


def validate_expense(gasto: ExpenseInput) -> Optional[str]:
    required = (gasto.fecha, gasto.concepto, gasto.proveedor, gasto.tipo_gasto, gasto.responsable)
    if not all(required) or not gasto.monto or gasto.monto <= 0:
        return "Por favor, completa todos los campos obligatorios y asegúrate que el valor sea positivo."
    return None


def expense_payload(gasto: ExpenseInput, id_sede: int) -> dict:
    payload = gasto.model_dump(mode="json")
    payload["id_sede"] = id_sede
    return payload


def _contains(value: str, needle: Optional[str]) -> bool:
    return not needle or needle.lower() in (value or "").lower()


def filter_expenses(gastos: Iterable[Expense], filtro: ExpenseFilter) -> List[Expense]:
    return [
        g for g in gastos
        if (not filtro.fecha_inicio or g.fecha >= filtro.fecha_inicio)
        and (not filtro.fecha_final or g.fecha <= filtro.fecha_final)
        and _contains(g.concepto, filtro.concepto)
        and _contains(g.proveedor, filtro.proveedor)
        and _contains(g.responsable, filtro.responsable)
    ]


def merge_responsibles(doctors: Iterable[str], assistants: Iterable[str]) -> List[str]:
    return sorted(set(doctors) | set(assistants))
