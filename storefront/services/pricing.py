# storefront/services/pricing.py
from decimal import Decimal
from typing import Iterable

from storefront.domain.schemas import Order, PricingSummary, Voucher
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

ZERO = Decimal("0")


class PricingEngine:
    """
    Derived totals for a cart or an order. Nothing here is stored, callers
    recompute after every change to lines, shipping fee or voucher.

    Lines only need quantity, unit_price and original_price, so CartItem and
    OrderLineItem both work.
    """

    def compute(
        self,
        lines: Iterable,
        voucher: Voucher | None = None,
        shipping_fee: Decimal | int = ZERO,
        voucher_discount: Decimal | None = None,
    ) -> PricingSummary:
        subtotal = ZERO
        product_discount = ZERO
        gift_quantity = 0

        for line in lines:
            #gift lines: reported, never priced
            if line.unit_price == 0:
                gift_quantity += line.quantity
                continue

            subtotal += line.unit_price * line.quantity
            if line.original_price > line.unit_price:
                product_discount += (line.original_price - line.unit_price) * line.quantity

        shipping = Decimal(shipping_fee)

        # an order carries the discount the backend granted, a cart carries a voucher
        if voucher_discount is not None:
            discount = Decimal(voucher_discount)
        else:
            discount = self.voucher_discount(voucher, subtotal)

        total = max(ZERO, subtotal + shipping - discount)

        return PricingSummary(
            subtotal=subtotal,
            product_discount=product_discount,
            voucher_discount=discount,
            shipping_fee=shipping,
            total=total,
            gift_quantity=gift_quantity,
        )

    def voucher_discount(self, voucher: Voucher | None, subtotal: Decimal) -> Decimal:
        if voucher is None or not voucher.condition_met(subtotal):
            return ZERO
        return voucher.value

    def for_order(self, order: Order) -> PricingSummary:
        return self.compute(
            order.items,
            shipping_fee=order.shipping_fee,
            voucher_discount=order.voucher_discount,
        )

    def reconciles(self, order: Order) -> bool:
        """True when the backend total matches the total rebuilt from the lines."""
        summary = self.for_order(order)
        if summary.total != order.total:
            logger.warning(
                f"Order {order.code}: backend total {order.total} != computed {summary.total}"
            )
            return False
        return True
