"""Async ClinicNexus REST client.

Every call opens a short-lived httpx client; failures are mapped onto
``errors.TransportError`` / ``errors.RequestError``.
"""
from __future__ import annotations
from typing import Any, Generic, Type, TypeVar
from urllib.parse import quote
import httpx
import pydantic
from pydantic import BaseModel
from . import config
from .errors import RequestError, TransportError
from .log import get_logger
from .models import (
    Appointment,
    AppointmentInventory,
    AppointmentWithNames,
    Billing,
    Feedback,
    InventoryItem,
    Patient,
    Staff,
)

log = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _parse(model: Type[M], payload: Any) -> M:
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        log.warning("backend_payload_rejected", model=model.__name__, errors=exc.error_count())
        raise TransportError(f"Server returned an unreadable {model.__name__} record") from exc


class _Resource(Generic[M]):
    """Plain CRUD over ``/api/<name>``."""

    def __init__(self, client: "ClinicClient", path: str, model: Type[M]):
        self._client = client
        self.path = path
        self.model = model

    async def list(self) -> list[M]:
        rows = await self._client.get(self.path)
        return [_parse(self.model, r) for r in rows or []]

    async def get(self, record_id: int) -> M:
        return _parse(self.model, await self._client.get(f"{self.path}/{record_id}"))

    async def create(self, record: M) -> M:
        return _parse(self.model, await self._client.post(self.path, record.to_wire()))

    async def update(self, record_id: int, record: M) -> M:
        payload = await self._client.put(f"{self.path}/{record_id}", record.to_wire())
        # some endpoints answer 204; fall back to what we sent
        return record if payload is None else _parse(self.model, payload)

    async def delete(self, record_id: int) -> None:
        await self._client.delete(f"{self.path}/{record_id}")


class ClinicClient:
    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or config.API_URL).rstrip("/")
        self.timeout = config.TIMEOUT if timeout is None else timeout

        self.patients = _Resource(self, "/api/patients", Patient)
        self.staff = _Resource(self, "/api/staff", Staff)
        self.appointments = _Resource(self, "/api/appointments", Appointment)
        self.inventory = _Resource(self, "/api/inventory", InventoryItem)
        self.billing = _Resource(self, "/api/billing", Billing)
        self.feedback = _Resource(self, "/api/feedback", Feedback)

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(http2=True, timeout=self.timeout) as client:
                resp = await client.request(method, url, json=json, headers={"Accept": "application/json"})
        except httpx.TransportError as exc:
            log.warning("backend_unreachable", method=method, url=url, error=str(exc))
            raise TransportError(f"Cannot connect to backend server at {self.base_url}") from exc

        if resp.is_error:
            message = resp.text.strip() or f"HTTP {resp.status_code}: {resp.reason_phrase}"
            log.info("backend_rejected", method=method, url=url, status=resp.status_code)
            raise RequestError(message, resp.status_code)

        if resp.status_code == 204:
            return None

        content_type = resp.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise TransportError(
                f"Server returned {content_type or 'non-JSON'} response. Is the backend server running?"
            )
        return resp.json()

    async def get(self, path: str) -> Any:
        return await self._request("GET", path)

    async def post(self, path: str, body: Any) -> Any:
        return await self._request("POST", path, json=body)

    async def put(self, path: str, body: Any) -> Any:
        return await self._request("PUT", path, json=body)

    async def delete(self, path: str) -> Any:
        return await self._request("DELETE", path)

    # Name lookups ---------------------------------------------------------

    async def search_patients(self, name: str) -> list[Patient]:
        rows = await self.get(f"/api/patients/search/{quote(name, safe='')}")
        return [_parse(Patient, r) for r in rows or []]

    async def search_staff(self, name: str) -> list[Staff]:
        rows = await self.get(f"/api/staff/search/{quote(name, safe='')}")
        return [_parse(Staff, r) for r in rows or []]

    async def search_doctors(self, name: str) -> list[Staff]:
        return [s for s in await self.search_staff(name) if s.job_type == "Doctor"]

    async def patient_id_by_name(self, name: str) -> int:
        return int(await self.get(f"/api/patients/id/{quote(name, safe='')}"))

    async def staff_id_by_name(self, name: str) -> int:
        return int(await self.get(f"/api/staff/id/{quote(name, safe='')}"))

    # Appointments joined with display names --------------------------------

    async def appointments_with_names(self) -> list[AppointmentWithNames]:
        rows = await self.get("/api/appointments/with-names")
        return [_parse(AppointmentWithNames, r) for r in rows or []]

    async def create_appointment_with_names(self, appointment: AppointmentWithNames) -> AppointmentWithNames:
        """Book by display names; the backend resolves both ids and answers with the joined row."""
        body = appointment.to_wire()
        for key in ("appointmentID", "patientID", "doctorID"):
            body.pop(key, None)
        return _parse(AppointmentWithNames, await self.post("/api/appointments/with-names", body))

    # Inventory consumed per appointment ----------------------------------

    async def appointment_inventory(self) -> list[AppointmentInventory]:
        rows = await self.get("/api/appointment-inventory")
        return [_parse(AppointmentInventory, r) for r in rows or []]

    async def get_appointment_inventory(self, appointment_id: int, item_id: int) -> AppointmentInventory | None:
        try:
            payload = await self.get(f"/api/appointment-inventory/{appointment_id}/{item_id}")
        except RequestError as exc:
            if exc.status_code == 404:
                return None
            raise
        return None if payload is None else _parse(AppointmentInventory, payload)

    async def create_appointment_inventory(self, usage: AppointmentInventory) -> AppointmentInventory:
        payload = await self.post("/api/appointment-inventory", usage.to_wire())
        return usage if payload is None else _parse(AppointmentInventory, payload)

    async def update_appointment_inventory(self, usage: AppointmentInventory) -> AppointmentInventory:
        payload = await self.put(
            f"/api/appointment-inventory/{usage.appointment_id}/{usage.item_id}", usage.to_wire()
        )
        return usage if payload is None else _parse(AppointmentInventory, payload)

    async def delete_appointment_inventory(self, appointment_id: int, item_id: int) -> None:
        await self.delete(f"/api/appointment-inventory/{appointment_id}/{item_id}")
