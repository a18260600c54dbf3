# services/clinic_api.py
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx

from smiley_console.config import get_clinic_api_url, get_request_timeout

console = logging.getLogger("smiley.clinic_api")

RESOURCES = {
    "doctors": "/api/personal/doctores",
    "assistants": "/api/personal/auxiliares",
    "services": "/api/services",
    "stadium_services": "/api/stadium-services",
    "lab_costs": "/api/laboratorios",
    "accounts": "/api/cuentas",
    "payment_methods": "/api/metodos-pago",
    "sedes": "/api/sedes",
    "records": "/api/records",
    "expenses": "/api/gastos",
    "settlements": "/api/liquidations",
}


class ClinicAPIError(Exception):
    """A clinic backend call failed or answered with a non-success status."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class SessionExpired(Exception):
    """The bearer token was rejected and the single refresh attempt did not help."""


class ClinicSession:
    """
    Authenticated connection to the clinic backend for one console user.

    Every call carries the bearer token. A 401 triggers exactly one token
    refresh followed by one retry; if that fails too, SessionExpired is raised
    and the caller is expected to clear the stored session.
    """

    def __init__(
        self,
        token: str,
        username: Optional[str] = None,
        selected_sede: Optional[int] = None,
        on_token_refreshed: Optional[Callable[[str], None]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token
        self.username = username
        self.selected_sede = selected_sede
        self.on_token_refreshed = on_token_refreshed
        self.client = client or new_client()

    async def aclose(self):
        await self.client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        resp = await self.client.request(method, path, headers=self._headers(), **kwargs)
        if resp.status_code != 401:
            return resp

        console.info("Token rejected on %s %s, trying refresh", method, path)
        if not await self._refresh():
            raise SessionExpired("Sesión expirada. Por favor, inicia sesión nuevamente.")

        resp = await self.client.request(method, path, headers=self._headers(), **kwargs)
        if resp.status_code == 401:
            console.warning("Request %s %s still unauthorized after refresh", method, path)
            raise SessionExpired("Sesión expirada. Por favor, inicia sesión nuevamente.")
        return resp

    async def _refresh(self) -> bool:
        try:
            resp = await self.client.post("/api/refresh", json={"token": self.token})
        except httpx.HTTPError as exc:
            console.warning("Token refresh failed: %s", exc)
            return False
        if resp.status_code not in (200, 201):
            console.warning("Token refresh rejected (%s)", resp.status_code)
            return False
        new_token = (resp.json() or {}).get("token")
        if not new_token:
            return False
        self.token = new_token
        if self.on_token_refreshed:
            self.on_token_refreshed(new_token)
        console.info("Token refreshed for %s", self.username or "console user")
        return True


def new_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=get_clinic_api_url(), timeout=get_request_timeout())


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict):
        return body.get("error") or body.get("message") or resp.text
    return resp.text


async def _call(session: ClinicSession, method: str, path: str, **kwargs) -> Dict[str, Any]:
    try:
        resp = await session.request(method, path, **kwargs)
    except httpx.HTTPError as exc:
        console.error("[CLINIC] %s %s error: %s", method, path, exc)
        return {"success": False, "status": 502, "error": str(exc)}

    if resp.status_code in (200, 201, 204):
        data = resp.json() if resp.content else None
        return {"success": True, "status": resp.status_code, "data": data}

    console.error("[CLINIC] %s %s failed (%s): %s", method, path, resp.status_code, resp.text)
    return {"success": False, "status": resp.status_code, "error": _error_message(resp)}


def ensure_success(result: Dict[str, Any], message: str):
    """Return the payload of a successful call or raise ClinicAPIError with a user-facing message."""
    if result.get("success"):
        return result.get("data")
    status = result.get("status") or 502
    backend_error = result.get("error")
    # only 4xx bodies are meant for the user
    detail = backend_error if 400 <= status < 500 and backend_error else message
    raise ClinicAPIError(status if 400 <= status < 500 else 502, detail)


# --- authentication ---

async def authenticate(usuario: str, clave: str, client: Optional[httpx.AsyncClient] = None):
    own_client = client is None
    client = client or new_client()
    try:
        resp = await client.post("/api/login", json={"usuario": usuario, "clave": clave})
    except httpx.HTTPError as exc:
        console.error("[CLINIC] login error: %s", exc)
        return {"success": False, "status": 502, "error": str(exc)}
    finally:
        if own_client:
            await client.aclose()

    if resp.status_code in (200, 201):
        return {"success": True, "data": resp.json()}
    return {"success": False, "status": resp.status_code, "error": _error_message(resp)}


# --- generic resources ---

async def list_resource(session: ClinicSession, resource: str, params: Optional[dict] = None):
    return await _call(session, "GET", RESOURCES[resource], params=params)


async def create_resource(session: ClinicSession, resource: str, payload: dict):
    return await _call(session, "POST", RESOURCES[resource], json=payload)


async def update_resource(session: ClinicSession, resource: str, payload: dict, item_id=None):
    path = RESOURCES[resource] if item_id is None else f"{RESOURCES[resource]}/{item_id}"
    return await _call(session, "PUT", path, json=payload)


async def delete_resource(session: ClinicSession, resource: str, item_id=None, body: Optional[dict] = None):
    path = RESOURCES[resource] if item_id is None else f"{RESOURCES[resource]}/{item_id}"
    return await _call(session, "DELETE", path, json=body)


# --- specific operations ---

async def get_staff_names(session: ClinicSession, role: str, id_sede: Optional[int] = None):
    path = "/api/doctors" if role == "doctor" else "/api/assistants"
    params = {"id_sede": id_sede} if id_sede is not None else None
    return await _call(session, "GET", path, params=params)


async def get_lab_costs(session: ClinicSession, service_name: str):
    return await _call(session, "GET", RESOURCES["lab_costs"], params={"nombre_serv": service_name})


async def list_records(session: ClinicSession, id_sede: Optional[int] = None):
    params = {"id_sede": id_sede} if id_sede is not None else None
    return await _call(session, "GET", RESOURCES["records"], params=params)


async def delete_records(session: ClinicSession, ids: List[str]):
    return await _call(session, "DELETE", RESOURCES["records"], json={"ids": ids})


async def search_patients(session: ClinicSession, nombre: str):
    return await _call(session, "GET", "/api/pacientes", params={"nombre": nombre})


async def add_patient_credit(session: ClinicSession, doc_id: str, payload: dict):
    return await _call(session, "POST", f"/api/pacientes/{doc_id}/credito", json=payload)


async def get_cash_base(session: ClinicSession, id_sede: int):
    return await _call(session, "GET", f"/api/caja/{id_sede}")


async def set_cash_base(session: ClinicSession, id_sede: int, monto: float):
    return await _call(session, "PUT", f"/api/caja/{id_sede}", json={"monto": monto})


async def apply_cash_delta(session: ClinicSession, id_sede: int, delta: float, referencia: Optional[str] = None):
    """Ask the backend to add `delta` to the cash drawer in one request."""
    payload = {"delta": delta, "referencia": referencia or uuid.uuid4().hex}
    return await _call(session, "POST", f"/api/caja/{id_sede}/movimientos", json=payload)


async def get_percentage(session: ClinicSession, tier_id: int):
    return await _call(session, "GET", f"/api/porcentajes/{tier_id}")
