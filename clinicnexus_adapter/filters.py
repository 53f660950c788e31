"""Case-insensitive substring filtering used by the list views and local lookups."""
from __future__ import annotations
from typing import Any, Iterable, Sequence
from .models import AppointmentWithNames


def matches(term: str, *fields: Any) -> bool:
    """True when ``term`` occurs in any field; an empty term matches everything."""
    needle = (term or "").strip().lower()
    if not needle:
        return True
    return any(needle in str(f).lower() for f in fields if f is not None)


def _visit(row: AppointmentWithNames) -> str:
    return getattr(row.visit_type, "value", row.visit_type)


def filter_appointments(rows: Iterable[AppointmentWithNames], term: str) -> list[AppointmentWithNames]:
    return [r for r in rows if matches(term, r.patient_name, r.doctor_name, _visit(r), r.notes)]


def search_appointments(rows: Sequence[AppointmentWithNames], query: str) -> list[AppointmentWithNames]:
    """Lookup used when picking the appointment a bill belongs to."""
    return [r for r in rows if matches(query, r.patient_name, r.doctor_name, _visit(r))]
