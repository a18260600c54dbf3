import asyncio
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from smiley_console.model import LabSupplyCost, ServiceDefinition
from smiley_console.policy_loader import estadio_sede_id
from smiley_console.services import clinic_api
from smiley_console.services.clinic_api import ClinicSession, ensure_success

console = logging.getLogger("smiley.catalog")


def build_price_map(
    services: Iterable[ServiceDefinition],
    stadium_services: Optional[Iterable[ServiceDefinition]] = None,
    prefer_stadium: bool = False,
) -> Dict[str, ServiceDefinition]:
    """Service name -> definition. With prefer_stadium the Estadio catalog wins on duplicated names."""
    price_map = {s.nombre: s for s in services}
    for s in stadium_services or []:
        if prefer_stadium or s.nombre not in price_map:
            price_map[s.nombre] = s
    return price_map


def sum_lab_costs(rows: Iterable[LabSupplyCost]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for row in rows:
        totals[row.nombre_serv] += Decimal(str(row.costo))
    return dict(totals)


async def fetch_lab_cost_map(session: ClinicSession, service_names: Iterable[str]) -> Dict[str, Decimal]:
    names = list(dict.fromkeys(service_names))
    results = await asyncio.gather(*(clinic_api.get_lab_costs(session, name) for name in names))

    lab_costs: Dict[str, Decimal] = {}
    for name, result in zip(names, results):
        if not result.get("success"):
            console.warning("Lab costs for %s unavailable (%s), using 0", name, result.get("status"))
            lab_costs[name] = Decimal("0")
            continue
        rows = [LabSupplyCost(**row) for row in result.get("data") or []]
        # the backend filters by nombre_serv, but only trust rows of this service
        lab_costs[name] = sum_lab_costs(r for r in rows if r.nombre_serv == name).get(name, Decimal("0"))
    return lab_costs


async def load_catalogs(session: ClinicSession, id_sede: Optional[int] = None) -> Dict[str, List[ServiceDefinition]]:
    services = ensure_success(
        await clinic_api.list_resource(session, "services"),
        "Error al cargar los servicios",
    ) or []
    stadium = []
    if id_sede is not None and id_sede == estadio_sede_id():
        stadium = ensure_success(
            await clinic_api.list_resource(session, "stadium_services"),
            "Error al cargar los servicios de Estadio",
        ) or []
    return {
        "services": [ServiceDefinition(**s) for s in services],
        "stadium_services": [ServiceDefinition(**s) for s in stadium],
    }


async def load_price_map(session: ClinicSession, id_sede: Optional[int] = None) -> Dict[str, ServiceDefinition]:
    catalogs = await load_catalogs(session, id_sede)
    return build_price_map(
        catalogs["services"],
        catalogs["stadium_services"],
        prefer_stadium=bool(catalogs["stadium_services"]),
    )


def validate_service(service: ServiceDefinition, existing: Iterable[ServiceDefinition], original_name: Optional[str] = None) -> Optional[str]:
    """Return a user-facing validation message, or None when the service can be sent."""
    if not service.nombre.strip() or service.precio <= 0:
        return "Por favor, ingresa un nombre y un precio válido."
    if service.nombre != original_name and any(s.nombre == service.nombre for s in existing):
        return "Ya existe un servicio con este nombre."
    return None


def validate_lab_cost(row: LabSupplyCost) -> Optional[str]:
    if not row.nombre_serv or not row.nombre_insumo:
        return "Por favor complete todos los campos obligatorios"
    if row.costo < 0:
        return "Por favor ingrese un costo válido"
    return None
