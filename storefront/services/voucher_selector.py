# storefront/services/voucher_selector.py
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, List

from storefront.domain.errors import VoucherError
from storefront.domain.schemas import AppliedVoucher, Voucher
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class VoucherSelector:
    """
    Holds the single applied voucher of a cart.

    apply() validates against the current subtotal and replaces whatever was
    applied before (vouchers never stack). Both apply() and remove() notify
    on_change so the owner can recompute totals and persist the choice.
    """

    def __init__(
        self,
        subtotal: Callable[[], Decimal],
        on_change: Callable[[AppliedVoucher | None], None] | None = None,
        today: Callable[[], date] = date.today,
    ):
        self._subtotal = subtotal
        self._on_change = on_change
        self._today = today
        self.applied: AppliedVoucher | None = None

    @property
    def voucher(self) -> Voucher | None:
        return self.applied.voucher if self.applied else None

    def validate(self, voucher: Voucher) -> None:
        if not voucher.is_active:
            raise VoucherError(VoucherError.INACTIVE, f"Voucher {voucher.code} is not active")

        today = self._today()
        if voucher.start_date and today < voucher.start_date:
            raise VoucherError(VoucherError.NOT_STARTED, f"Voucher {voucher.code} is not valid yet")
        if voucher.end_date and today > voucher.end_date:
            raise VoucherError(VoucherError.EXPIRED, f"Voucher {voucher.code} has expired")

        subtotal = self._subtotal()
        if not voucher.condition_met(subtotal):
            raise VoucherError(
                VoucherError.MIN_ORDER_NOT_MET,
                f"Voucher {voucher.code} needs an order of at least {voucher.min_order_amount}",
            )

    def apply(self, voucher: Voucher) -> AppliedVoucher:
        if self.applied and self.applied.code == voucher.code:
            raise VoucherError(VoucherError.DUPLICATE, f"Voucher {voucher.code} is already applied")

        self.validate(voucher)

        if self.applied:
            logger.info(f"Replacing voucher {self.applied.code} with {voucher.code}")
        self.applied = AppliedVoucher(voucher=voucher)
        self._notify()
        return self.applied

    def apply_by_code(self, code: str, available: Iterable[Voucher]) -> AppliedVoucher:
        wanted = code.strip().upper()
        for voucher in available:
            if voucher.code.strip().upper() == wanted:
                return self.apply(voucher)
        raise VoucherError(VoucherError.NOT_FOUND, f"Voucher {code} not found")

    def apply_by_id(self, voucher_id: int, available: Iterable[Voucher]) -> AppliedVoucher:
        for voucher in available:
            if voucher.id == voucher_id:
                return self.apply(voucher)
        raise VoucherError(VoucherError.NOT_FOUND, f"Voucher #{voucher_id} not found")

    def remove(self) -> None:
        if self.applied is None:
            return
        logger.info(f"Removing voucher {self.applied.code}")
        self.applied = None
        self._notify()

    def restore(self, voucher: Voucher | None) -> None:
        """Put back a previously persisted choice without re-validating or notifying."""
        self.applied = AppliedVoucher(voucher=voucher) if voucher else None

    def eligible(self, available: Iterable[Voucher]) -> List[Voucher]:
        result = []
        for voucher in available:
            try:
                self.validate(voucher)
            except VoucherError:
                continue
            result.append(voucher)
        return result

    def _notify(self) -> None:
        if self._on_change:
            self._on_change(self.applied)
