import asyncio
import json
import pathlib
import pytest
from clinicnexus_adapter.errors import RequestError
from clinicnexus_adapter.models import AppointmentInventory, AppointmentWithNames

FIX = pathlib.Path(__file__).parent / "fixtures"


class FakeResource:
    """In-memory stand-in for one CRUD resource; logs each call as it starts."""

    def __init__(self, name, calls, id_field):
        self.name = name
        self.calls = calls
        self.id_field = id_field
        self.rows = {}
        self.fail = {}
        self._next_id = 100

    async def _step(self, op, payload):
        self.calls.append((self.name, op, payload))
        await asyncio.sleep(0)
        if op in self.fail:
            raise self.fail[op]

    async def list(self):
        await self._step("list", None)
        return list(self.rows.values())

    async def get(self, record_id):
        await self._step("get", record_id)
        if record_id not in self.rows:
            raise RequestError("Not found", 404)
        return self.rows[record_id]

    async def create(self, record):
        await self._step("create", record)
        self._next_id += 1
        stored = record.model_copy(update={self.id_field: self._next_id})
        self.rows[self._next_id] = stored
        return stored

    async def update(self, record_id, record):
        await self._step("update", record)
        self.rows[record_id] = record
        return record

    async def delete(self, record_id):
        await self._step("delete", record_id)
        self.rows.pop(record_id, None)


class FakeClient:
    def __init__(self):
        self.calls = []
        self.appointments = FakeResource("appointments", self.calls, "appointment_id")
        self.billing = FakeResource("billing", self.calls, "billing_id")
        self.inventory = FakeResource("inventory", self.calls, "item_id")
        self.patients = FakeResource("patients", self.calls, "patient_id")
        self.staff = FakeResource("staff", self.calls, "staff_id")
        self.patient_ids = {}
        self.staff_ids = {}
        self.with_names = []
        self.usage = {}

    async def patient_id_by_name(self, name):
        self.calls.append(("patients", "id", name))
        if name not in self.patient_ids:
            raise RequestError("", 404)
        return self.patient_ids[name]

    async def staff_id_by_name(self, name):
        self.calls.append(("staff", "id", name))
        if name not in self.staff_ids:
            raise RequestError("", 404)
        return self.staff_ids[name]

    async def appointments_with_names(self):
        return list(self.with_names)

    async def create_appointment_with_names(self, appointment):
        self.calls.append(("appointments", "create", appointment))
        return appointment.model_copy(update={"appointment_id": 31, "patient_id": 4, "doctor_id": 5})

    async def appointment_inventory(self):
        return list(self.usage.values())

    async def get_appointment_inventory(self, appointment_id, item_id):
        return self.usage.get((appointment_id, item_id))

    async def create_appointment_inventory(self, usage):
        self.calls.append(("appointment-inventory", "create", usage))
        self.usage[(usage.appointment_id, usage.item_id)] = usage
        return usage

    async def update_appointment_inventory(self, usage):
        self.calls.append(("appointment-inventory", "update", usage))
        self.usage[(usage.appointment_id, usage.item_id)] = usage
        return usage

    async def delete_appointment_inventory(self, appointment_id, item_id):
        self.calls.append(("appointment-inventory", "delete", (appointment_id, item_id)))
        self.usage.pop((appointment_id, item_id), None)

    def requests(self, resource=None):
        """(resource, op) pairs for mutating calls, in the order they were issued."""
        return [
            (r, op) for r, op, _ in self.calls
            if op in ("create", "update", "delete") and (resource is None or r == resource)
        ]


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def joined_rows():
    raw = json.loads((FIX / "appointments_with_names.json").read_text())
    return [AppointmentWithNames.model_validate(r) for r in raw]


@pytest.fixture
def notes():
    return []


@pytest.fixture
def seeded_usage():
    return AppointmentInventory(appointment_id=11, item_id=7, quantity_used=2)
