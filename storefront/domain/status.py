# storefront/domain/status.py
"""
Single place where raw backend status strings are turned into an order stage.

The backend sends free-form, localized text for both the order status
("Chờ xử lý", "Đang giao hàng", "Đã hủy", ...) and the payment status
("Chưa thanh toán", "Đã thanh toán", "paid", ...). Everything else in the
package asks this module instead of matching substrings itself, so a change
in backend vocabulary only touches the rule table below.
"""
import re
from collections import Counter
from enum import Enum
from typing import Iterable, List

from storefront.utils.text import fold


class CanonicalStatus(str, Enum):
    PENDING = "pending"          # awaiting payment
    PROCESSING = "processing"    # awaiting confirmation
    PACKING = "packing"
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    CanonicalStatus.PENDING: "Chờ thanh toán",
    CanonicalStatus.PROCESSING: "Đang xác nhận",
    CanonicalStatus.PACKING: "Đang đóng gói",
    CanonicalStatus.SHIPPING: "Đang giao hàng",
    CanonicalStatus.DELIVERED: "Đã giao",
    CanonicalStatus.COMPLETED: "Hoàn tất",
    CanonicalStatus.CANCELLED: "Đã hủy",
}

ALL = "all"


def _words(*keywords):
    # match at a word start so "huy" does not hit "van chuyen"
    return re.compile("|".join(r"\b" + re.escape(k) for k in keywords))


_UNPAID = _words("chua", "unpaid", "that bai", "failed", "pending", "cho")
_PAID = _words("da thanh toan", "paid", "thanh cong", "success")


def is_paid(raw_payment_status: str | None) -> bool:
    s = fold(raw_payment_status)
    if not s or _UNPAID.search(s):
        return False
    return bool(_PAID.search(s))


def _any_paid(order_status: str, payment_status: str) -> bool:
    return is_paid(payment_status)


# priority ordered, first match wins
# (result, order status pattern, extra condition on the folded pair)
_RULES = (
    (CanonicalStatus.CANCELLED, _words("huy", "cancel"), None),
    (CanonicalStatus.COMPLETED, _words("thanh cong", "hoan tat", "hoan thanh", "completed"), None),
    (CanonicalStatus.DELIVERED, _words("da giao", "delivered"), None),
    (CanonicalStatus.SHIPPING, _words("dang giao", "van chuyen", "shipping"), None),
    (CanonicalStatus.PACKING, _words("chuan bi", "dong goi", "preparing", "packing"), None),
    (CanonicalStatus.PROCESSING, _words("xac nhan", "dang xu ly", "confirmed", "processing"), None),
    # still "waiting" on the order side but the gateway already reported payment
    (CanonicalStatus.PROCESSING, _words("cho", "pending"), _any_paid),
    (CanonicalStatus.PENDING, _words("cho", "pending"), None),
)


def classify(raw_order_status: str | None, raw_payment_status: str | None = None) -> CanonicalStatus:
    order_s = fold(raw_order_status)
    payment_s = fold(raw_payment_status)

    for result, pattern, condition in _RULES:
        if not pattern.search(order_s):
            continue
        if condition is not None and not condition(order_s, payment_s):
            continue
        return result

    # unknown vocabulary: fall back on the payment side
    if is_paid(payment_s):
        return CanonicalStatus.PROCESSING
    return CanonicalStatus.PENDING


def _as_status(key) -> CanonicalStatus:
    if isinstance(key, CanonicalStatus):
        return key
    return CanonicalStatus(str(key).lower())


def matches(key, raw_order_status: str | None, raw_payment_status: str | None = None) -> bool:
    return classify(raw_order_status, raw_payment_status) is _as_status(key)


def status_of(order) -> CanonicalStatus:
    return classify(order.order_status, order.payment_status)


def filter_orders(orders: Iterable, key=ALL) -> List:
    if key is None or key == ALL:
        return list(orders)
    wanted = _as_status(key)
    return [o for o in orders if matches(wanted, o.order_status, o.payment_status)]


def count_by_status(orders: Iterable) -> dict:
    counts = Counter(status_of(o) for o in orders)
    result = {s.value: counts.get(s, 0) for s in CanonicalStatus}
    result[ALL] = sum(counts.values())
    return result


# action legality

def can_cancel(status: CanonicalStatus) -> bool:
    return status in (CanonicalStatus.PENDING, CanonicalStatus.PROCESSING)


def can_retry_payment(raw_order_status: str | None, raw_payment_status: str | None) -> bool:
    return (
        classify(raw_order_status, raw_payment_status) is CanonicalStatus.PENDING
        and not is_paid(raw_payment_status)
    )


def can_review(status: CanonicalStatus) -> bool:
    return status in (CanonicalStatus.DELIVERED, CanonicalStatus.COMPLETED)


def can_reorder(order) -> bool:
    return any(not item.is_gift for item in order.items)
