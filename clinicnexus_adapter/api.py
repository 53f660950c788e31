from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date as Date
from typing import Any, Optional, Union
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from . import config
from .appointments import AppointmentCoordinator
from .billing import BillingDesk, draft_for, summarize
from .client import ClinicClient
from .errors import ClinicError, RequestError, TransportError, ValidationError
from .filters import filter_appointments
from .inventory import InventoryUsageTracker, stock_alerts
from .log import configure_logging, get_logger
from .models import VisitType

log = get_logger(__name__)


class ScheduleRequest(BaseModel):
    # id or display name
    patient: Union[int, str]
    doctor: Union[int, str]
    date: str
    time: str
    duration: int = 30
    visit_type: str = Field(VisitType.CHECK_UP.value, alias="visitType")
    notes: str = ""

    model_config = {
        "populate_by_name": True
    }


class NamedScheduleRequest(ScheduleRequest):
    patient: str
    doctor: str


class RescheduleRequest(BaseModel):
    new_date: str
    new_time: str


class BillingRequest(BaseModel):
    appointment_id: int = Field(alias="appointmentID")
    # omitted: priced from the appointment's visit type
    amount: Optional[float] = None

    model_config = {
        "populate_by_name": True
    }


class PaymentRequest(BaseModel):
    payment_date: Optional[Date] = Field(None, alias="paymentDate")

    model_config = {
        "populate_by_name": True
    }


class UsageRequest(BaseModel):
    items: dict[int, int]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    yield


# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)

app = FastAPI(title="ClinicNexus Adapter Service", lifespan=lifespan)


def verify_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token when CLINICNEXUS_API_KEY is configured."""
    if not config.API_KEY:
        return
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != config.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_client() -> ClinicClient:
    return ClinicClient()


@app.exception_handler(ClinicError)
async def clinic_error_handler(request: Request, exc: ClinicError):
    if isinstance(exc, ValidationError):
        status = 422
    elif isinstance(exc, TransportError):
        status = 503
    elif isinstance(exc, RequestError) and exc.status_code == 404:
        status = 404
    else:
        status = 502
    log.info("request_failed", path=request.url.path, status=status, error=str(exc))
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# Appointments ---------------------------------------------------------------

@app.get("/appointments", dependencies=[Depends(verify_key)])
async def list_appointments(q: str = Query("", description="Substring filter"), client: ClinicClient = Depends(get_client)):
    rows = await AppointmentCoordinator(client).list_with_names()
    return [r.to_wire() for r in filter_appointments(rows, q)]


@app.post("/appointments", dependencies=[Depends(verify_key)], status_code=201)
async def schedule(req: ScheduleRequest, client: ClinicClient = Depends(get_client)):
    appt = await AppointmentCoordinator(client).schedule(
        req.patient, req.doctor, req.date, req.time, req.duration, req.visit_type, req.notes
    )
    return appt.to_wire()


@app.post("/appointments/with-names", dependencies=[Depends(verify_key)], status_code=201)
async def schedule_by_names(req: NamedScheduleRequest, client: ClinicClient = Depends(get_client)):
    appt = await AppointmentCoordinator(client).schedule_by_names(
        req.patient, req.doctor, req.date, req.time, req.duration, req.visit_type, req.notes
    )
    return appt.to_wire()


@app.put("/appointments/{appointment_id}", dependencies=[Depends(verify_key)])
async def edit(appointment_id: int, fields: dict[str, Any], client: ClinicClient = Depends(get_client)):
    appt = await client.appointments.get(appointment_id)
    return (await AppointmentCoordinator(client).edit(appt, **fields)).to_wire()


@app.post("/appointments/{appointment_id}/reschedule", dependencies=[Depends(verify_key)])
async def reschedule(appointment_id: int, req: RescheduleRequest, client: ClinicClient = Depends(get_client)):
    appt = await client.appointments.get(appointment_id)
    return (await AppointmentCoordinator(client).reschedule(appt, req.new_date, req.new_time)).to_wire()


@app.post("/appointments/{appointment_id}/complete", dependencies=[Depends(verify_key)])
async def complete(appointment_id: int, client: ClinicClient = Depends(get_client)):
    appt = await client.appointments.get(appointment_id)
    result = await AppointmentCoordinator(client).complete(appt)
    if result.status_error is not None:
        raise result.status_error
    return {
        "appointment": result.appointment.to_wire(),
        "billing": result.billing.to_wire() if result.billing else None,
        "billing_error": str(result.billing_error) if result.billing_error else None,
    }


@app.post("/appointments/{appointment_id}/cancel", dependencies=[Depends(verify_key)])
async def cancel(appointment_id: int, client: ClinicClient = Depends(get_client)):
    appt = await client.appointments.get(appointment_id)
    return (await AppointmentCoordinator(client).cancel(appt)).to_wire()


@app.delete("/appointments/{appointment_id}", dependencies=[Depends(verify_key)], status_code=204)
async def delete_appointment(appointment_id: int, client: ClinicClient = Depends(get_client)):
    appt = await client.appointments.get(appointment_id)
    await AppointmentCoordinator(client).delete(appt)


# Inventory usage ------------------------------------------------------------

@app.get("/appointments/{appointment_id}/inventory", dependencies=[Depends(verify_key)])
async def list_usage(appointment_id: int, client: ClinicClient = Depends(get_client)):
    return [u.to_wire() for u in await InventoryUsageTracker(client).usage_for(appointment_id)]


@app.post("/appointments/{appointment_id}/inventory", dependencies=[Depends(verify_key)])
async def record_usage(appointment_id: int, req: UsageRequest, client: ClinicClient = Depends(get_client)):
    recorded = await InventoryUsageTracker(client).record_usage(appointment_id, req.items)
    return [u.to_wire() for u in recorded]


@app.delete("/appointments/{appointment_id}/inventory/{item_id}", dependencies=[Depends(verify_key)], status_code=204)
async def remove_usage(appointment_id: int, item_id: int, client: ClinicClient = Depends(get_client)):
    await InventoryUsageTracker(client).remove_usage(appointment_id, item_id)


# Billing --------------------------------------------------------------------

@app.get("/billing/summary", dependencies=[Depends(verify_key)])
async def billing_summary(client: ClinicClient = Depends(get_client)):
    return asdict(summarize(await client.billing.list()))


@app.post("/billing", dependencies=[Depends(verify_key)], status_code=201)
async def create_billing(req: BillingRequest, client: ClinicClient = Depends(get_client)):
    desk = BillingDesk(client)
    amount = req.amount
    if amount is None:
        rows = await client.appointments_with_names()
        match = next((a for a in rows if a.appointment_id == req.appointment_id), None)
        if match is None:
            raise HTTPException(status_code=404, detail="No appointment found")
        amount = draft_for(match).amount
    return (await desk.create(req.appointment_id, amount)).to_wire()


@app.post("/billing/{billing_id}/pay", dependencies=[Depends(verify_key)])
async def pay_billing(billing_id: int, req: Optional[PaymentRequest] = Body(None), client: ClinicClient = Depends(get_client)):
    bill = await client.billing.get(billing_id)
    paid_on = req.payment_date if req else None
    return (await BillingDesk(client).mark_paid(bill, paid_on)).to_wire()


@app.delete("/billing/{billing_id}", dependencies=[Depends(verify_key)], status_code=204)
async def delete_billing(billing_id: int, client: ClinicClient = Depends(get_client)):
    bill = await client.billing.get(billing_id)
    await BillingDesk(client).delete(bill)


# Dashboard ------------------------------------------------------------------

@app.get("/dashboard", dependencies=[Depends(verify_key)])
async def dashboard(day: Optional[Date] = Query(None), client: ClinicClient = Depends(get_client)):
    today = await AppointmentCoordinator(client).day_summary(day)
    alerts = stock_alerts(await client.inventory.list())
    return {
        "appointments": asdict(today),
        "inventory": {**asdict(alerts), "critical": alerts.critical},
    }


# Entity search --------------------------------------------------------------

@app.get("/search/patients", dependencies=[Depends(verify_key)])
async def search_patients(q: str = Query(...), client: ClinicClient = Depends(get_client)):
    if len(q) < config.SEARCH_MIN_CHARS:
        return []
    return [{"id": p.patient_id, "name": p.name} for p in await client.search_patients(q)]


@app.get("/search/doctors", dependencies=[Depends(verify_key)])
async def search_doctors(q: str = Query(...), client: ClinicClient = Depends(get_client)):
    if len(q) < config.SEARCH_MIN_CHARS:
        return []
    return [{"id": s.staff_id, "name": s.name} for s in await client.search_doctors(q)]


@app.get("/search/appointments", dependencies=[Depends(verify_key)])
async def search_appointments(q: str = Query(...), client: ClinicClient = Depends(get_client)):
    if len(q) < config.SEARCH_MIN_CHARS:
        return []
    rows = await BillingDesk(client).search_appointments(q)
    return [{**draft_for(r).model_dump(), "patientName": r.patient_name} for r in rows if r.appointment_id]
