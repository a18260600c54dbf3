from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Dict, Any
from datetime import date, datetime
from enum import Enum


def _to_date(v):
    # backend sends either "2024-05-01" or "2024-05-01T00:00:00.000Z"
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, str) and v:
        return date.fromisoformat(v.split("T")[0])
    return v


class Role(str, Enum):
    doctor = "doctor"
    assistant = "assistant"


class TreatmentRecord(BaseModel):
    id: Optional[str] = None
    nombre_doctor: Optional[str] = None
    nombre_asistente: Optional[str] = None
    nombre_paciente: str
    doc_id: Optional[str] = None
    servicio: str
    sesiones: int = Field(1, ge=1, description="Sessions required to complete the service")
    fecha: date
    fecha_final: Optional[date] = None
    abono: float = 0
    metodo_pago_abono: Optional[str] = None
    descuento: float = 0
    valor_total: float = 0
    valor_liquidado: float = 0
    valor_pagado: float = 0
    metodo_pago: Optional[str] = None
    id_cuenta: Optional[int] = None
    id_cuenta_abono: Optional[int] = None
    es_paciente_propio: bool = False
    id_porc: Optional[int] = None
    notas: Optional[str] = None
    id_sede: Optional[int] = None

    @field_validator("id", mode="before")
    def normalize_id(cls, v):
        if v is None:
            return v
        return str(v)

    @field_validator("fecha", "fecha_final", mode="before")
    def normalize_dates(cls, v):
        return _to_date(v)

    @field_validator("abono", "descuento", "valor_total", "valor_liquidado", "valor_pagado", mode="before")
    def null_amounts(cls, v):
        return 0 if v is None else v

    @field_validator("nombre_paciente", "servicio", "nombre_doctor", "nombre_asistente")
    def strip_names(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class TreatmentRecordInput(BaseModel):
    nombre_doctor: Optional[str] = None
    nombre_asistente: Optional[str] = None
    nombre_paciente: str = Field(..., min_length=1)
    doc_id: Optional[str] = None
    servicio: str = Field(..., min_length=1)
    sesiones: int = Field(1, ge=1)
    fecha: date
    fecha_final: Optional[date] = None
    abono: float = Field(0, ge=0)
    metodo_pago_abono: Optional[str] = None
    descuento: float = Field(0, ge=0)
    valor_total: float = Field(..., ge=0)
    metodo_pago: Optional[str] = None
    id_cuenta: Optional[int] = None
    id_cuenta_abono: Optional[int] = None
    es_paciente_propio: bool = False
    id_porc: Optional[int] = None
    notas: Optional[str] = None


class ServiceDefinition(BaseModel):
    nombre: str
    precio: float
    sesiones: int = 1
    descripcion: Optional[str] = ""

    @field_validator("sesiones", mode="before")
    def default_sessions(cls, v):
        return v or 1


class ServiceUpdate(ServiceDefinition):
    nombre_original: str


class LabSupplyCost(BaseModel):
    id_laboratorio: Optional[int] = None
    nombre_serv: str
    nombre_insumo: str
    costo: float
    descripcion: Optional[str] = ""


class Doctor(BaseModel):
    id: Optional[int] = None
    nombre_doc: str = Field(..., min_length=1)
    id_sede: int
    id_rol: int = 1


class Assistant(BaseModel):
    id: Optional[int] = None
    nombre_aux: str = Field(..., min_length=1)
    id_porc: Optional[int] = None
    id_rol: int = 2
    id_user: Optional[int] = None
    id_sede: int


class LoginInput(BaseModel):
    usuario: str
    clave: str


class SedeSelection(BaseModel):
    id_sede: int


class PatientCredit(BaseModel):
    monto: float = Field(..., gt=0)
    metodo_pago: Optional[str] = None


class BatchDelete(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class SettlementFilter(BaseModel):
    profesional: str
    rol: Role = Role.doctor
    fecha_inicio: date
    fecha_fin: date
    paciente: Optional[str] = None
    servicio: Optional[str] = None


class CompletionRequest(BaseModel):
    record_ids: List[str] = Field(..., min_length=1)
    metodo_pago: str
    fecha_final: Optional[date] = None


class GroupSettlement(BaseModel):
    key: str
    paciente: str
    servicio: str
    sesiones_completadas: int
    sesiones_requeridas: int
    precio: float
    total_bruto: float
    total_pagado: float
    costo_laboratorio: float
    total_ajustado: float
    porcentaje: float
    total_liquidar: float
    es_paciente_propio: bool
    metodos_pago: List[str]
    record_ids: List[str]


class PendingGroup(BaseModel):
    key: str
    paciente: str
    servicio: str
    sesiones_completadas: int
    sesiones_requeridas: int
    saldo_pendiente: float
    record_ids: List[str]


class SettlementPreview(BaseModel):
    profesional: str
    rol: Role
    fecha_inicio: date
    fecha_fin: date
    completados: List[GroupSettlement]
    pendientes: List[PendingGroup]
    total_liquidar: float


class Expense(BaseModel):
    id: Optional[int] = None
    concepto: str
    proveedor: str
    tipo_gasto: str
    monto: float
    fecha: date
    responsable: str
    comentario: Optional[str] = None
    id_sede: Optional[int] = None

    @field_validator("fecha", mode="before")
    def normalize_fecha(cls, v):
        return _to_date(v)


class ExpenseInput(BaseModel):
    fecha: Optional[date] = None
    concepto: str = ""
    proveedor: str = ""
    tipo_gasto: str = ""
    monto: float = 0
    responsable: str = ""
    comentario: Optional[str] = None


class ExpenseFilter(BaseModel):
    fecha_inicio: Optional[date] = None
    fecha_final: Optional[date] = None
    concepto: Optional[str] = None
    proveedor: Optional[str] = None
    responsable: Optional[str] = None


class CashBase(BaseModel):
    monto: float = Field(..., ge=0)


class ConsoleUser(BaseModel):
    username: str
    user: Dict[str, Any] = Field(default_factory=dict)
    selected_sede: Optional[int] = None


class CashMovement(BaseModel):
    delta: float
    referencia: Optional[str] = None
