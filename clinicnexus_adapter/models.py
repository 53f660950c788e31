from __future__ import annotations
from datetime import date as Date, time as Time
from enum import Enum
from typing import Any, Literal, Union
from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator


class VisitType(str, Enum):
    CHECK_UP = "Check-up"
    PROCEDURE = "Procedure"
    EMERGENCY = "Emergency"


class AppointmentStatus(str, Enum):
    NOT_DONE = "Not Done"
    DONE = "Done"
    CANCELED = "Canceled"


TERMINAL_STATUSES = frozenset({AppointmentStatus.DONE, AppointmentStatus.CANCELED})


class _Record(BaseModel):
    """Backend record; wire names are camelCase, unknown keys ride along untouched."""

    model_config = {
        "populate_by_name": True,
        "extra": "allow",
    }

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class EntityRef(BaseModel):
    """Identity plus display name of a patient, doctor or appointment."""
    id: int
    name: str


class Patient(_Record):
    patient_id: int | None = Field(None, alias="patientID")
    name: str
    birth_date: str | None = Field(None, alias="birthDate")
    phone: str | None = None
    email: str | None = None
    primary_doctor_id: int | None = Field(None, alias="primaryDoctorID")
    active_status: bool = Field(True, alias="activeStatus")


class Staff(_Record):
    staff_id: int | None = Field(None, alias="staffID")
    name: str
    job_type: Literal["Doctor", "Nurse", "Admin"] = Field("Doctor", alias="jobType")
    specialization: str | None = None
    active_status: bool = Field(True, alias="activeStatus")


class Appointment(_Record):
    appointment_id: int | None = Field(None, alias="appointmentID")
    patient_id: int = Field(alias="patientID")
    doctor_id: int = Field(alias="doctorID")
    date: Date
    time: Time
    duration: int = Field(30, gt=0)
    # unknown visit types from the backend are kept verbatim
    visit_type: Union[VisitType, str] = Field(VisitType.CHECK_UP, alias="visitType", union_mode="left_to_right")
    status: AppointmentStatus = AppointmentStatus.NOT_DONE
    notes: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def default_status(cls, v):
        # absent status means the visit hasn't happened yet
        return AppointmentStatus.NOT_DONE if v in (None, "") else v

    @field_validator("notes", mode="before")
    @classmethod
    def default_notes(cls, v):
        return "" if v is None else v

    @field_serializer("time")
    def serialize_time(self, t: Time) -> str:
        return t.strftime("%H:%M")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AppointmentWithNames(Appointment):
    """Row of the pre-joined ``/appointments/with-names`` listing."""
    patient_id: int | None = Field(None, alias="patientID")
    doctor_id: int | None = Field(None, alias="doctorID")
    patient_name: str = Field("", alias="patientName")
    doctor_name: str = Field("", alias="doctorName")


class Billing(_Record):
    billing_id: int | None = Field(None, alias="billingID")
    appointment_id: int = Field(alias="appointmentID")
    amount: float = Field(ge=0)
    paid: bool = False
    payment_date: Date | None = Field(None, alias="paymentDate")

    @field_validator("amount")
    @classmethod
    def round_cents(cls, v: float) -> float:
        return round(v, 2)

    @field_validator("payment_date", mode="before")
    @classmethod
    def blank_payment_date(cls, v):
        return None if v == "" else v

    @model_validator(mode="after")
    def unpaid_has_no_payment_date(self):
        # the backend keeps a stale paymentDate when a bill is reopened
        if not self.paid:
            self.payment_date = None
        return self


class InventoryItem(_Record):
    item_id: int | None = Field(None, alias="itemID")
    name: str
    type: Literal["Medicine", "Equipment"] = "Medicine"
    stock_quantity: int = Field(0, alias="stockQuantity")
    reorder_threshold: int | None = Field(None, alias="reorderThreshold")
    unit_price: float | None = Field(None, alias="unitPrice")
    active_status: bool = Field(True, alias="activeStatus")


class AppointmentInventory(_Record):
    appointment_id: int = Field(alias="appointmentID")
    item_id: int = Field(alias="itemID")
    quantity_used: int = Field(alias="quantityUsed", gt=0)


class Feedback(_Record):
    feedback_id: int | None = Field(None, alias="feedbackID")
    appointment_id: int = Field(alias="appointmentID")
    doctor_id: int = Field(alias="doctorID")
    patient_id: int = Field(alias="patientID")
    rating: int = Field(ge=1, le=5)
    comments: str | None = None
