# tests/test_inventory_matcher.py
import pytest

from conftest import KEY, keys
from fulfillment.errors import InsufficientInventoryError, QuantityError
from fulfillment.models import InventoryItem
from fulfillment.services.inventory_matcher import select_items


def test_takes_first_matching_in_snapshot_order():
    snapshot = [InventoryItem("9", "Refined Metal")] + keys(4, start=10)
    picked = select_items(snapshot, KEY, 2)
    assert [it.asset_id for it in picked] == ["10", "11"]


def test_name_match_is_exact():
    snapshot = [InventoryItem("1", KEY.lower()), InventoryItem("2", KEY + " (Strange)")]
    with pytest.raises(InsufficientInventoryError) as ei:
        select_items(snapshot, KEY, 1)
    assert ei.value.have == 0


def test_insufficient_is_all_or_nothing():
    with pytest.raises(InsufficientInventoryError) as ei:
        select_items(keys(2), KEY, 3)
    assert (ei.value.have, ei.value.need) == (2, 3)


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity(quantity):
    with pytest.raises(QuantityError):
        select_items(keys(2), KEY, quantity)


def test_as_asset_shape():
    assert keys(1)[0].as_asset() == {"appid": 440, "contextid": "2", "amount": 1, "assetid": "1"}
