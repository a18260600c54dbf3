import unicodedata
from datetime import date
from io import BytesIO
from typing import Iterable, List, Tuple
from urllib.parse import quote

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from smiley_console.model import Expense, SettlementPreview

SETTLEMENT_HEADERS = [
    "Paciente", "Servicio", "Progreso Sesiones", "Total Pagado", "Método de Pago",
    "Tipo de Paciente", "Costo Laboratorio", "Porcentaje", "Total a Liquidar",
]
EXPENSE_HEADERS = [
    "ID", "Concepto", "Proveedor", "Tipo de Gasto", "Monto", "Fecha", "Responsable", "Comentario",
]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def content_disposition(filename: str) -> str:
    """Attachment header safe for latin-1 transport, with the UTF-8 name in `filename*`."""
    fallback = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    fallback = fallback.replace("\\", "_").replace('"', "_")
    encoded = quote(filename, safe="")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


_header_fill = PatternFill(start_color="2563EB", end_color="2563EB", fill_type="solid")
_header_font = Font(color="FFFFFF", bold=True)


def _workbook(title: str, headers: List[str], rows: Iterable[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    ws.append(headers)
    for cell in ws[1]:
        cell.fill = _header_fill
        cell.font = _header_font
        cell.alignment = Alignment(horizontal="center")
    for row in rows:
        ws.append(row)

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _settlement_row(g: dict) -> list:
    return [
        g["paciente"],
        g["servicio"],
        f"{g['sesiones_completadas']}/{g['sesiones_requeridas']}",
        g.get("total_pagado", 0),
        ", ".join(g.get("metodos_pago") or []),
        "Propio" if g.get("es_paciente_propio") else "Clínica",
        g.get("costo_laboratorio", 0),
        f"{round(float(g['porcentaje'] or 0) * 100)}%",
        g["total_liquidar"],
    ]


def settlement_workbook(preview: SettlementPreview) -> Tuple[bytes, str]:
    rows = [_settlement_row(g.model_dump()) for g in preview.completados]
    filename = f"Liquidacion_{preview.profesional}_{preview.fecha_inicio}_a_{preview.fecha_fin}.xlsx"
    return _workbook("Liquidación", SETTLEMENT_HEADERS, rows), filename


def history_workbook(summary: dict) -> Tuple[bytes, str]:
    """Export of a recorded batch, built from summarize_batch output."""
    rows = [_settlement_row(g) for g in summary["grupos"]]
    filename = f"Historial_Liquidacion_{summary['doctor']}_{summary['fecha_liquidacion']}.xlsx"
    return _workbook("Liquidación", SETTLEMENT_HEADERS, rows), filename


def expenses_workbook(gastos: Iterable[Expense], today: date = None) -> Tuple[bytes, str]:
    rows = [
        [
            g.id,
            g.concepto,
            g.proveedor,
            g.tipo_gasto,
            f"${g.monto:.2f}",
            g.fecha.strftime("%d/%m/%Y"),
            g.responsable,
            g.comentario or "-",
        ]
        for g in gastos
    ]
    filename = f"Historial_Gastos_{(today or date.today()).isoformat()}.xlsx"
    return _workbook("Gastos", EXPENSE_HEADERS, rows), filename
