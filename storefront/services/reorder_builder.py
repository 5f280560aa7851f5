# storefront/services/reorder_builder.py
from typing import Dict, Mapping

from storefront.domain.errors import EmptySelectionError, ValidationError
from storefront.domain.schemas import Order, ReorderItem, ReorderRequest
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class ReorderBuilder:
    """
    Turns a past order into a "buy again" payload.

    Gift lines (unit price 0) are always left out. The optional selection
    maps variant_id -> quantity and overrides the original quantities;
    a quantity of 0 drops that line.
    """

    def build(self, order: Order, selection: Mapping[int, int] | None = None) -> ReorderRequest:
        quantities: Dict[int, int] = {}
        for line in order.purchasable_items:
            quantities[line.variant_id] = quantities.get(line.variant_id, 0) + line.quantity

        if selection is not None:
            quantities = self._apply_selection(order, quantities, selection)

        items = [
            ReorderItem(variant_id=variant_id, quantity=qty)
            for variant_id, qty in quantities.items()
            if qty > 0
        ]

        if not items:
            raise EmptySelectionError(f"Nothing to buy again from order {order.code}")

        logger.info(f"Reorder from {order.code}: {len(items)} line(s)")
        return ReorderRequest(source_order_id=order.id, items=items)

    def _apply_selection(
        self,
        order: Order,
        quantities: Dict[int, int],
        selection: Mapping[int, int],
    ) -> Dict[int, int]:
        result = dict(quantities)
        for variant_id, qty in selection.items():
            variant_id = int(variant_id)
            if variant_id not in quantities:
                #gift or foreign variant, cannot be bought through a reorder
                logger.warning(f"Variant {variant_id} is not purchasable in order {order.code}, skipped")
                continue
            if qty < 0:
                raise ValidationError(f"Quantity for variant {variant_id} cannot be negative")
            result[variant_id] = qty
        return result
