# fulfillment/services/inventory_matcher.py
from typing import List, Sequence

from fulfillment.models import InventoryItem
from fulfillment.errors import InsufficientInventoryError, QuantityError


def select_items(snapshot: Sequence[InventoryItem], item_name: str, quantity: int) -> List[InventoryItem]:
    """
    Take the first `quantity` items named exactly `item_name`, in snapshot order.
    All-or-nothing: raises InsufficientInventoryError instead of a partial pick.
    """
    if quantity <= 0:
        raise QuantityError("Quantity must be positive", quantity=quantity)

    matches = [it for it in snapshot if it.name == item_name]
    if len(matches) < quantity:
        raise InsufficientInventoryError(have=len(matches), need=quantity, item_name=item_name)
    return matches[:quantity]
