"""Visit-type tariff used whenever a bill is derived from an appointment."""
from __future__ import annotations
from .models import VisitType

TARIFF: dict[VisitType, float] = {
    VisitType.CHECK_UP: 75.00,
    VisitType.PROCEDURE: 150.00,
    VisitType.EMERGENCY: 200.00,
}
DEFAULT_AMOUNT = 100.00


def billing_amount(visit_type: VisitType | str | None) -> float:
    """Return the amount billed for a visit of the given type."""
    try:
        return TARIFF[VisitType(visit_type)]
    except ValueError:
        return DEFAULT_AMOUNT
