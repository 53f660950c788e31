"""Inventory consumed during appointments.

Stock is checked for every item before anything is written; the writes
themselves are separate requests with no reservation or rollback.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Optional
from .client import ClinicClient
from .errors import ClinicError, RequestError, ValidationError
from .log import get_logger
from .models import AppointmentInventory, InventoryItem
from .notifications import Notification, Notifier, log_notification

log = get_logger(__name__)


@dataclass(frozen=True)
class StockAlerts:
    out_of_stock: int
    low_stock: int

    @property
    def critical(self) -> int:
        return self.out_of_stock + self.low_stock


def stock_alerts(items: list[InventoryItem]) -> StockAlerts:
    # items without a reorder threshold are never "low", only out
    return StockAlerts(
        out_of_stock=sum(1 for i in items if i.stock_quantity == 0),
        low_stock=sum(
            1 for i in items
            if i.reorder_threshold is not None and 0 < i.stock_quantity <= i.reorder_threshold
        ),
    )


class InventoryUsageTracker:
    def __init__(self, client: ClinicClient, notify: Optional[Notifier] = None):
        self.client = client
        self._notify = notify or log_notification

    async def usage_for(self, appointment_id: int) -> list[AppointmentInventory]:
        return [u for u in await self.client.appointment_inventory() if u.appointment_id == appointment_id]

    async def record_usage(self, appointment_id: int, usage: Mapping[int, int]) -> list[AppointmentInventory]:
        """Record ``{item_id: quantity}`` against an appointment and draw down stock."""
        if not usage:
            raise ValidationError("No inventory items given")
        for item_id, quantity in usage.items():
            if quantity <= 0:
                raise ValidationError(f"Quantity for item ID {item_id} must be positive")

        items: dict[int, InventoryItem] = {}
        for item_id, quantity in usage.items():
            item = await self._item(item_id)
            if not item.active_status or item.stock_quantity < quantity:
                raise ValidationError(f"Insufficient inventory for item ID: {item_id}")
            items[item_id] = item

        recorded = []
        try:
            for item_id, quantity in usage.items():
                recorded.append(await self._add_usage(appointment_id, item_id, quantity))
                item = items[item_id]
                drawn = item.model_copy(update={"stock_quantity": item.stock_quantity - quantity})
                await self.client.inventory.update(item_id, drawn)
        except ClinicError as exc:
            self._notify(Notification("Inventory Error", str(exc), exc))
            raise

        log.info("inventory_used", appointment_id=appointment_id, items=dict(usage))
        self._notify(Notification("Inventory Updated", f"Recorded usage of {len(recorded)} item(s)."))
        return recorded

    async def _item(self, item_id: int) -> InventoryItem:
        try:
            return await self.client.inventory.get(item_id)
        except RequestError as exc:
            if exc.status_code == 404:
                raise ValidationError(f"Inventory item {item_id} not found") from None
            raise

    async def _add_usage(self, appointment_id: int, item_id: int, quantity: int) -> AppointmentInventory:
        existing = await self.client.get_appointment_inventory(appointment_id, item_id)
        if existing is None:
            return await self.client.create_appointment_inventory(
                AppointmentInventory(appointment_id=appointment_id, item_id=item_id, quantity_used=quantity)
            )
        bumped = existing.model_copy(update={"quantity_used": existing.quantity_used + quantity})
        return await self.client.update_appointment_inventory(bumped)

    async def remove_usage(self, appointment_id: int, item_id: int) -> None:
        """Drop a usage row. Stock already drawn down is not returned."""
        try:
            await self.client.delete_appointment_inventory(appointment_id, item_id)
        except ClinicError as exc:
            self._notify(Notification("Inventory Error", str(exc), exc))
            raise
        log.info("inventory_usage_removed", appointment_id=appointment_id, item_id=item_id)
        self._notify(Notification("Inventory Updated", "Usage record removed."))
