import pytest
from clinicnexus_adapter.errors import ValidationError
from clinicnexus_adapter.inventory import InventoryUsageTracker, stock_alerts
from clinicnexus_adapter.models import InventoryItem


@pytest.fixture
def stocked(fake_client):
    fake_client.inventory.rows = {
        7: InventoryItem(item_id=7, name="Gauze", type="Equipment", stock_quantity=10),
        8: InventoryItem(item_id=8, name="Ibuprofen", stock_quantity=1),
        9: InventoryItem(item_id=9, name="Expired serum", stock_quantity=50, active_status=False),
    }
    return fake_client


@pytest.mark.asyncio
async def test_usage_is_recorded_and_stock_drawn_down(stocked):
    recorded = await InventoryUsageTracker(stocked).record_usage(11, {7: 3, 8: 1})

    assert [(u.item_id, u.quantity_used) for u in recorded] == [(7, 3), (8, 1)]
    assert stocked.inventory.rows[7].stock_quantity == 7
    assert stocked.inventory.rows[8].stock_quantity == 0
    assert [u.item_id for u in await InventoryUsageTracker(stocked).usage_for(11)] == [7, 8]


@pytest.mark.asyncio
async def test_repeat_usage_accumulates(stocked, seeded_usage):
    stocked.usage[(11, 7)] = seeded_usage
    recorded = await InventoryUsageTracker(stocked).record_usage(11, {7: 4})

    assert recorded[0].quantity_used == 6
    assert ("appointment-inventory", "update") in stocked.requests()


@pytest.mark.asyncio
@pytest.mark.parametrize("usage, message", [
    ({7: 3, 8: 2}, "Insufficient inventory for item ID: 8"),
    ({9: 1}, "Insufficient inventory for item ID: 9"),
    ({404: 1}, "not found"),
    ({7: 0}, "must be positive"),
    ({}, "No inventory items"),
])
async def test_nothing_written_when_any_item_is_short(stocked, usage, message):
    with pytest.raises(ValidationError, match=message):
        await InventoryUsageTracker(stocked).record_usage(11, usage)
    assert stocked.requests() == []
    assert stocked.inventory.rows[7].stock_quantity == 10


@pytest.mark.asyncio
async def test_remove_usage(stocked, seeded_usage, notes):
    stocked.usage[(11, 7)] = seeded_usage
    await InventoryUsageTracker(stocked, notify=notes.append).remove_usage(11, 7)

    assert stocked.requests() == [("appointment-inventory", "delete")]
    assert await InventoryUsageTracker(stocked).usage_for(11) == []
    assert stocked.inventory.rows[7].stock_quantity == 10
    assert notes[-1].message == "Usage record removed."


def test_stock_alerts():
    items = [
        InventoryItem(item_id=1, name="Gauze", stock_quantity=0, reorder_threshold=5),
        InventoryItem(item_id=2, name="Ibuprofen", stock_quantity=5, reorder_threshold=5),
        InventoryItem(item_id=3, name="Saline", stock_quantity=6, reorder_threshold=5),
        InventoryItem(item_id=4, name="Splint", stock_quantity=1),
    ]
    alerts = stock_alerts(items)
    assert (alerts.out_of_stock, alerts.low_stock, alerts.critical) == (1, 1, 2)
