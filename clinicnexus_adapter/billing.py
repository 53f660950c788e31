"""Manual billing: bills raised from a picked appointment, payments, totals."""
from __future__ import annotations
import inspect
from dataclasses import dataclass
from datetime import date as Date
from typing import Optional
from pydantic import BaseModel, Field
from .client import ClinicClient
from .errors import ClinicError, ValidationError
from . import filters
from .log import get_logger
from .models import AppointmentWithNames, Billing
from .notifications import Invalidator, Notification, Notifier, log_notification
from .tariff import billing_amount

log = get_logger(__name__)


class BillingRow(Billing):
    """Bill joined with its appointment's display names."""
    patient_name: str = Field("Unknown Patient", alias="patientName")
    doctor_name: str = Field("Unknown Doctor", alias="doctorName")
    appointment_date: str = Field("Unknown Date", alias="appointmentDate")
    visit_type: str = Field("Unknown Type", alias="visitType")


class BillingDraft(BaseModel):
    appointment_id: int
    amount: float
    label: str


@dataclass(frozen=True)
class BillingSummary:
    total_revenue: float
    pending_amount: float
    paid_count: int
    unpaid_count: int


def draft_for(appointment: AppointmentWithNames) -> BillingDraft:
    """Pre-fill a bill for the picked appointment, priced from the tariff."""
    if appointment.appointment_id is None:
        raise ValidationError("Please select an appointment")
    visit = getattr(appointment.visit_type, "value", appointment.visit_type)
    return BillingDraft(
        appointment_id=appointment.appointment_id,
        amount=billing_amount(appointment.visit_type),
        label=f"{appointment.patient_name} - {appointment.doctor_name} ({visit})",
    )


def summarize(rows: list[Billing]) -> BillingSummary:
    paid = [b for b in rows if b.paid]
    unpaid = [b for b in rows if not b.paid]
    return BillingSummary(
        total_revenue=round(sum(b.amount for b in paid), 2),
        pending_amount=round(sum(b.amount for b in unpaid), 2),
        paid_count=len(paid),
        unpaid_count=len(unpaid),
    )


def filter_billing(rows: list[BillingRow], term: str) -> list[BillingRow]:
    return [r for r in rows if filters.matches(term, r.patient_name, r.doctor_name, r.visit_type, r.amount)]


class BillingDesk:
    def __init__(
        self,
        client: ClinicClient,
        notify: Optional[Notifier] = None,
        on_change: Optional[Invalidator] = None,
    ):
        self.client = client
        self._notify = notify or log_notification
        self._on_change = on_change

    async def list_with_details(self) -> list[BillingRow]:
        bills = await self.client.billing.list()
        by_id = {a.appointment_id: a for a in await self.client.appointments_with_names()}
        rows = []
        for bill in bills:
            row = bill.to_wire()
            appt = by_id.get(bill.appointment_id)
            if appt is not None:
                row.update(
                    patientName=appt.patient_name or "Unknown Patient",
                    doctorName=appt.doctor_name or "Unknown Doctor",
                    appointmentDate=appt.date.isoformat(),
                    visitType=getattr(appt.visit_type, "value", appt.visit_type),
                )
            rows.append(BillingRow.model_validate(row))
        return rows

    async def search_appointments(self, query: str) -> list[AppointmentWithNames]:
        """Search function for the appointment picker (feeds ``EntitySearch``)."""
        return filters.search_appointments(await self.client.appointments_with_names(), query)

    async def create(
        self,
        appointment_id: Optional[int],
        amount: float,
        paid: bool = False,
        payment_date: Optional[Date] = None,
    ) -> Billing:
        if not appointment_id:
            raise ValidationError("Please select an appointment")
        if amount is None or amount <= 0:
            raise ValidationError("Please enter a valid amount")
        if paid and payment_date is None:
            payment_date = Date.today()
        elif not paid and payment_date is not None:
            raise ValidationError("Only paid bills carry a payment date")
        bill = Billing(appointment_id=appointment_id, amount=amount, paid=paid, payment_date=payment_date)
        log.info("billing_requested", appointment_id=appointment_id, amount=bill.amount, paid=paid)
        return await self._mutate(
            self.client.billing.create(bill),
            Notification("Billing Created", f"Billing record created for ${bill.amount:.2f}"),
        )

    async def create_from(self, draft: BillingDraft) -> Billing:
        return await self.create(draft.appointment_id, draft.amount)

    async def mark_paid(self, billing: Billing, on: Optional[Date] = None) -> Billing:
        if billing.billing_id is None:
            raise ValidationError("Billing record has not been created yet")
        settled = Billing(
            billing_id=billing.billing_id,
            appointment_id=billing.appointment_id,
            amount=billing.amount,
            paid=True,
            payment_date=on or Date.today(),
        )
        return await self._mutate(
            self.client.billing.update(billing.billing_id, settled),
            Notification("Billing Updated", "Billing record marked as paid."),
        )

    async def delete(self, billing: Billing) -> None:
        if billing.billing_id is None:
            raise ValidationError("Billing record has not been created yet")
        await self._mutate(
            self.client.billing.delete(billing.billing_id),
            Notification("Billing Deleted", "Billing record has been deleted."),
        )

    async def _mutate(self, request, success: Notification):
        try:
            result = await request
        except ClinicError as exc:
            self._notify(Notification("Error", str(exc), exc))
            raise
        self._notify(success)
        if self._on_change is not None:
            outcome = self._on_change("billing")
            if inspect.isawaitable(outcome):
                await outcome
        return result
