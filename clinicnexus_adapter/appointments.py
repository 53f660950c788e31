"""Appointment lifecycle: scheduling, rescheduling, completion and cancellation.

Each transition validates locally, then issues its request(s) to the backend.
Completion fans out into two independent requests (status update, then bill
creation); neither waits on the other and a failed bill never un-completes the
appointment.
"""
from __future__ import annotations
import asyncio
import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date as Date, time as Time
from typing import Any, Optional, Union
import pydantic
from .client import ClinicClient
from .errors import ClinicError, PartialFailure, RequestError, ValidationError
from .log import get_logger
from .models import (
    Appointment,
    AppointmentStatus,
    AppointmentWithNames,
    Billing,
    EntityRef,
    Patient,
    Staff,
    VisitType,
)
from .notifications import Invalidator, Notification, Notifier, log_notification
from .tariff import billing_amount

log = get_logger(__name__)

EntityLike = Union[int, str, EntityRef, Patient, Staff, Mapping, None]

EDITABLE_FIELDS = frozenset(
    {"patient_id", "doctor_id", "date", "time", "duration", "visit_type", "status", "notes"}
)
# camelCase wire name -> field name, so edits can arrive in either spelling
WIRE_NAMES = {f.alias: name for name, f in Appointment.model_fields.items() if f.alias}


def parse_date(value: Union[Date, str]) -> Date:
    if isinstance(value, Date):
        return value
    try:
        return Date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid date {value!r}; expected YYYY-MM-DD") from None


def parse_time(value: Union[Time, str]) -> Time:
    if isinstance(value, Time):
        return value
    try:
        return Time.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid time {value!r}; expected HH:MM") from None


def _slot(date, time, duration: int, visit_type) -> tuple[Date, Time, VisitType]:
    appt_date, appt_time = parse_date(date), parse_time(time)
    if duration <= 0:
        raise ValidationError("Duration must be a positive number of minutes")
    try:
        return appt_date, appt_time, VisitType(visit_type)
    except ValueError:
        raise ValidationError(f"Unknown visit type {visit_type!r}") from None


@dataclass
class CompletionResult:
    """Outcome of both requests issued by ``complete``."""
    appointment: Appointment
    billing: Optional[Billing] = None
    status_error: Optional[ClinicError] = None
    billing_error: Optional[ClinicError] = None

    @property
    def ok(self) -> bool:
        return self.status_error is None and self.billing_error is None

    @property
    def partial_failure(self) -> Optional[PartialFailure]:
        if self.ok or (self.status_error and self.billing_error):
            return None
        if self.billing_error:
            return PartialFailure(
                "Appointment marked as done but the billing record could not be created",
                succeeded=["status"],
                failed={"billing": self.billing_error},
            )
        return PartialFailure(
            "Billing record created but the appointment status could not be updated",
            succeeded=["billing"],
            failed={"status": self.status_error},
        )


@dataclass(frozen=True)
class DaySummary:
    day: Date
    total: int
    done: int
    pending: int
    active_doctors: int
    active_patients: int


def summarize_day(
    appointments: list[Appointment],
    staff: list[Staff],
    patients: list[Patient] = (),
    day: Optional[Date] = None,
) -> DaySummary:
    """Front-desk counters: the day's visits split by status, plus who is on the books."""
    day = day or Date.today()
    todays = [a for a in appointments if a.date == day]
    return DaySummary(
        day=day,
        total=len(todays),
        done=sum(1 for a in todays if a.status == AppointmentStatus.DONE),
        pending=sum(1 for a in todays if a.status == AppointmentStatus.NOT_DONE),
        active_doctors=sum(1 for s in staff if s.active_status and s.job_type == "Doctor"),
        active_patients=sum(1 for p in patients if p.active_status),
    )


class AppointmentCoordinator:
    def __init__(
        self,
        client: ClinicClient,
        notify: Optional[Notifier] = None,
        on_change: Optional[Invalidator] = None,
    ):
        self.client = client
        self._notify = notify or log_notification
        self._on_change = on_change

    # Reads ------------------------------------------------------------------

    async def list_appointments(self) -> list[Appointment]:
        return await self.client.appointments.list()

    async def list_with_names(self) -> list[AppointmentWithNames]:
        return await self.client.appointments_with_names()

    async def day_summary(self, day: Optional[Date] = None) -> DaySummary:
        appointments, staff, patients = await asyncio.gather(
            self.list_appointments(), self.client.staff.list(), self.client.patients.list()
        )
        return summarize_day(appointments, staff, patients, day)

    # Transitions -------------------------------------------------------------

    async def schedule(
        self,
        patient_ref: EntityLike,
        doctor_ref: EntityLike,
        date: Union[Date, str],
        time: Union[Time, str],
        duration: int = 30,
        visit_type: Union[VisitType, str] = VisitType.CHECK_UP,
        notes: str = "",
    ) -> Appointment:
        appt_date, appt_time, visit = _slot(date, time, duration, visit_type)
        patient_id = await self._resolve(patient_ref, "patient")
        doctor_id = await self._resolve(doctor_ref, "doctor")

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            date=appt_date,
            time=appt_time,
            duration=duration,
            visit_type=visit,
            status=AppointmentStatus.NOT_DONE,
            notes=notes or "",
        )
        created = await self._mutate(
            self.client.appointments.create(appointment),
            Notification("Appointment Scheduled", "Appointment has been scheduled successfully."),
            "Failed to schedule appointment",
        )
        log.info("appointment_scheduled", appointment_id=created.appointment_id, patient_id=patient_id)
        return created

    async def schedule_by_names(
        self,
        patient_name: str,
        doctor_name: str,
        date: Union[Date, str],
        time: Union[Time, str],
        duration: int = 30,
        visit_type: Union[VisitType, str] = VisitType.CHECK_UP,
        notes: str = "",
    ) -> AppointmentWithNames:
        """Book in one request; the backend resolves both names itself."""
        appt_date, appt_time, visit = _slot(date, time, duration, visit_type)
        if not (patient_name or "").strip():
            raise ValidationError("Please select a patient")
        if not (doctor_name or "").strip():
            raise ValidationError("Please select a doctor")
        appointment = AppointmentWithNames(
            patient_name=patient_name.strip(),
            doctor_name=doctor_name.strip(),
            date=appt_date,
            time=appt_time,
            duration=duration,
            visit_type=visit,
            status=AppointmentStatus.NOT_DONE,
            notes=notes or "",
        )
        created = await self._mutate(
            self.client.create_appointment_with_names(appointment),
            Notification("Appointment Scheduled", "Appointment has been scheduled successfully."),
            "Failed to schedule appointment",
        )
        log.info("appointment_scheduled", appointment_id=created.appointment_id, patient_id=created.patient_id)
        return created

    async def reschedule(
        self, appointment: Appointment, new_date: Union[Date, str], new_time: Union[Time, str]
    ) -> Appointment:
        appointment_id = _require_id(appointment)
        if appointment.status != AppointmentStatus.NOT_DONE:
            raise ValidationError(f"Cannot reschedule an appointment that is {appointment.status.value}")
        moved = appointment.model_copy(update={"date": parse_date(new_date), "time": parse_time(new_time)})
        return await self._mutate(
            self.client.appointments.update(appointment_id, moved),
            Notification("Appointment Updated", "Appointment has been updated successfully."),
            "Failed to update appointment",
        )

    async def edit(self, appointment: Appointment, **fields: Any) -> Appointment:
        """Replace any mutable fields. Does not guard terminal states."""
        appointment_id = _require_id(appointment)
        fields = {WIRE_NAMES.get(k, k): v for k, v in fields.items()}
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")
        try:
            edited = type(appointment).model_validate({**appointment.model_dump(), **fields})
        except pydantic.ValidationError as exc:
            raise ValidationError(str(exc)) from None
        return await self._mutate(
            self.client.appointments.update(appointment_id, edited),
            Notification("Appointment Updated", "Appointment has been updated successfully."),
            "Failed to update appointment",
        )

    async def cancel(self, appointment: Appointment) -> Appointment:
        """Move to the terminal Canceled status; the record is kept."""
        appointment_id = _require_id(appointment)
        if appointment.is_terminal:
            raise ValidationError(f"Cannot cancel an appointment that is {appointment.status.value}")
        canceled = appointment.model_copy(update={"status": AppointmentStatus.CANCELED})
        return await self._mutate(
            self.client.appointments.update(appointment_id, canceled),
            Notification("Appointment Cancelled", "Appointment has been cancelled successfully."),
            "Failed to cancel appointment",
        )

    async def delete(self, appointment: Appointment) -> None:
        await self._mutate(
            self.client.appointments.delete(_require_id(appointment)),
            Notification("Appointment Deleted", "Appointment has been deleted."),
            "Failed to delete appointment",
        )

    async def complete(self, appointment: Appointment) -> CompletionResult:
        """Mark done and bill it.

        The status update is issued first, then the bill, as two separate
        tasks. Each outcome is reported on its own; nothing is rolled back.
        """
        appointment_id = _require_id(appointment)
        # a second completion would bill the visit twice
        if appointment.is_terminal:
            raise ValidationError(f"Cannot complete an appointment that is {appointment.status.value}")
        done = appointment.model_copy(update={"status": AppointmentStatus.DONE})
        bill = Billing(appointment_id=appointment_id, amount=billing_amount(appointment.visit_type), paid=False)

        loop = asyncio.get_running_loop()
        status_task = loop.create_task(self.client.appointments.update(appointment_id, done))
        billing_task = loop.create_task(self.client.billing.create(bill))
        status_outcome, billing_outcome = await asyncio.gather(status_task, billing_task, return_exceptions=True)

        result = CompletionResult(appointment=done)
        for outcome in (status_outcome, billing_outcome):
            if isinstance(outcome, BaseException) and not isinstance(outcome, ClinicError):
                raise outcome

        if isinstance(status_outcome, ClinicError):
            result.status_error = status_outcome
            self._notify(Notification("Error", str(status_outcome) or "Failed to update appointment", status_outcome))
        else:
            result.appointment = status_outcome
            self._notify(Notification("Appointment Updated", "Appointment has been updated successfully."))
            await self._invalidate("appointments")

        if isinstance(billing_outcome, ClinicError):
            result.billing_error = billing_outcome
            partial = result.partial_failure
            self._notify(Notification(
                "Billing Error",
                str(billing_outcome) or "Failed to create billing record",
                partial or billing_outcome,
            ))
        else:
            result.billing = billing_outcome
            self._notify(Notification("Billing Created", f"Billing record created for ${bill.amount:.2f}"))
            await self._invalidate("billing")

        log.info(
            "appointment_completed",
            appointment_id=appointment_id,
            amount=bill.amount,
            status_ok=result.status_error is None,
            billing_ok=result.billing_error is None,
        )
        return result

    # Helpers ---------------------------------------------------------------

    async def _mutate(self, request, success: Notification, failure_message: str):
        try:
            result = await request
        except ClinicError as exc:
            self._notify(Notification("Error", str(exc) or failure_message, exc))
            raise
        self._notify(success)
        await self._invalidate("appointments")
        return result

    async def _invalidate(self, collection: str) -> None:
        if self._on_change is None:
            return
        outcome = self._on_change(collection)
        if inspect.isawaitable(outcome):
            await outcome

    async def _resolve(self, ref: EntityLike, kind: str) -> int:
        """Turn an id, entity or free-text name into a patient/doctor id."""
        id_key = "patientID" if kind == "patient" else "staffID"
        if ref is None or isinstance(ref, bool):
            raise ValidationError(f"Please select a {kind}")
        if isinstance(ref, int):
            return ref
        if isinstance(ref, EntityRef):
            return ref.id
        if isinstance(ref, (Patient, Staff)):
            found = ref.patient_id if isinstance(ref, Patient) else ref.staff_id
        elif isinstance(ref, Mapping):
            found = ref.get(id_key, ref.get("id"))
        elif isinstance(ref, str):
            found = await self._lookup_id(ref.strip(), kind)
        else:
            raise ValidationError(f"Cannot resolve {kind} from {type(ref).__name__}")
        if found is None:
            raise ValidationError(f"Selected {kind} has no id")
        return int(found)

    async def _lookup_id(self, name: str, kind: str) -> int:
        if not name:
            raise ValidationError(f"Please select a {kind}")
        lookup = self.client.patient_id_by_name if kind == "patient" else self.client.staff_id_by_name
        try:
            found = await lookup(name)
        except RequestError as exc:
            if exc.status_code == 404:
                raise ValidationError(f"{kind.capitalize()} '{name}' not found") from None
            raise
        if found <= 0:
            raise ValidationError(f"{kind.capitalize()} '{name}' not found")
        return found


def _require_id(appointment: Appointment) -> int:
    if appointment.appointment_id is None:
        raise ValidationError("Appointment has not been created yet")
    return appointment.appointment_id
