# storefront/services/cart_service.py
import asyncio
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List

from pydantic import ValidationError as SchemaError

from storefront.domain.errors import NetworkError, ValidationError
from storefront.domain.schemas import (
    AddItemIn,
    AppliedVoucher,
    CartItem,
    CartOut,
    PricingSummary,
    ProductSnapshot,
    Voucher,
)
from storefront.repos.cart_repo import CartRepo
from storefront.services.pricing import PricingEngine
from storefront.services.quantity_debouncer import QuantityDebouncer, RowId
from storefront.services.storefront_client import StorefrontClient
from storefront.services.voucher_selector import VoucherSelector
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartSession:
    """
    Cart of one shopper session.

    queries (items, summary, vouchers) only read local state, commands
    (add, remove, quantity edits, voucher apply/remove) change it. Signed-in
    carts are written to the backend, guest carts to the local store.
    Quantity edits go through the debouncer, the totals are recomputed from
    the current lines on every read.
    """

    def __init__(
        self,
        client: StorefrontClient,
        repo: CartRepo,
        pricing: PricingEngine | None = None,
        delay: float | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.client = client
        self.repo = repo
        self.pricing = pricing or PricingEngine()
        self.items: Dict[RowId, CartItem] = {}
        self.shipping_fee = Decimal("0")
        self.errors: List[str] = []
        self._available: List[Voucher] | None = None
        self._voucher_changed = False
        # one sqlalchemy session per cart, used from one worker thread at a time
        self._store_lock = asyncio.Lock()

        self.debouncer = QuantityDebouncer(
            self._commit_quantity,
            delay=delay,
            on_local_change=self._on_local_change,
            on_error=self._on_commit_error,
        )
        self.vouchers = VoucherSelector(self._subtotal, on_change=self._mark_voucher_changed, today=today)

    @property
    def session_key(self) -> str:
        return self.client.auth.owner_key

    @property
    def is_guest(self) -> bool:
        return not self.client.auth.is_authenticated

    #query
    @property
    def summary(self) -> PricingSummary:
        return self.pricing.compute(
            self.items.values(),
            voucher=self.vouchers.voucher,
            shipping_fee=self.shipping_fee,
        )

    def to_out(self) -> CartOut:
        errors, self.errors = self.errors, []
        return CartOut(
            items=list(self.items.values()),
            summary=self.summary,
            applied_voucher=self.vouchers.voucher,
            pending=self.debouncer.has_pending,
            errors=errors,
        )

    async def available_vouchers(self, refresh: bool = False) -> List[Voucher]:
        if self._available is None or refresh:
            raw = await asyncio.to_thread(self.client.list_vouchers)
            vouchers = []
            for item in raw:
                try:
                    vouchers.append(Voucher.model_validate(item))
                except SchemaError as e:
                    logger.warning(f"Skipping malformed voucher {item}: {e}")
            self._available = vouchers
        return self._available

    async def eligible_vouchers(self) -> List[Voucher]:
        return self.vouchers.eligible(await self.available_vouchers())

    #commands
    async def load(self) -> None:
        if self.is_guest:
            items = await self._store(self.repo.get_items, self.session_key)
        else:
            body = await asyncio.to_thread(self.client.get_cart)
            items = self._parse_cart(body)

        self.items = {item.row_id: item for item in items}
        for item in items:
            self.debouncer.track(item.row_id, item.quantity)

        self.vouchers.restore(await self._store(self.repo.get_voucher, self.session_key))
        logger.info(f"Cart {self.session_key} loaded with {len(self.items)} line(s)")

    async def add_item(self, payload: AddItemIn) -> CartItem | None:
        if self.is_guest:
            if payload.unit_price is None:
                raise ValidationError("Guest cart needs the product price")
            item = await self._store(
                self.repo.add_item,
                self.session_key,
                CartItem(
                    row_id=f"local_{payload.variant_id}",
                    variant_id=payload.variant_id,
                    quantity=payload.quantity,
                    unit_price=payload.unit_price,
                    original_price=payload.original_price if payload.original_price is not None else payload.unit_price,
                    product=ProductSnapshot(name=payload.name or "Sản phẩm", image=payload.image),
                ),
            )
            self.items[item.row_id] = item
            self.debouncer.track(item.row_id, item.quantity)
            return item

        await asyncio.to_thread(self.client.add_cart_item, payload.variant_id, payload.quantity)
        await self.load()
        return next((i for i in self.items.values() if i.variant_id == payload.variant_id), None)

    async def remove_item(self, row_id: RowId) -> None:
        item = self._line(row_id)
        self.debouncer.discard(row_id)

        if self.is_guest:
            await self._store(self.repo.delete_item, self.session_key, item.variant_id)
        else:
            await asyncio.to_thread(self.client.remove_cart_item, item.variant_id)

        self.items.pop(row_id, None)
        logger.info(f"Removed variant {item.variant_id} from cart {self.session_key}")

    def increment(self, row_id: RowId) -> bool:
        self._line(row_id)
        return self.debouncer.increment(row_id)

    def decrement(self, row_id: RowId) -> bool:
        self._line(row_id)
        return self.debouncer.decrement(row_id)

    def set_quantity(self, row_id: RowId, quantity: int) -> bool:
        self._line(row_id)
        return self.debouncer.set_quantity(row_id, quantity)

    async def apply_voucher(self, code: str) -> AppliedVoucher:
        applied = self.vouchers.apply_by_code(code, await self.available_vouchers())
        await self._save_voucher()
        return applied

    async def apply_voucher_id(self, voucher_id: int) -> AppliedVoucher:
        applied = self.vouchers.apply_by_id(voucher_id, await self.available_vouchers())
        await self._save_voucher()
        return applied

    async def remove_voucher(self) -> None:
        self.vouchers.remove()
        await self._save_voucher()

    def set_shipping_fee(self, fee: Decimal | int) -> None:
        self.shipping_fee = Decimal(fee)

    async def flush(self) -> None:
        """Send pending quantity edits right away (called before checkout)."""
        await self.debouncer.flush()

    def close(self) -> None:
        self.debouncer.close()

    # internals

    def _line(self, row_id: RowId) -> CartItem:
        item = self.items.get(row_id)
        if item is None:
            raise ValidationError(f"Cart line {row_id} not found")
        return item

    def _subtotal(self) -> Decimal:
        return self.pricing.compute(self.items.values()).subtotal

    def _on_local_change(self, row_id: RowId, quantity: int) -> None:
        item = self.items.get(row_id)
        if item:
            self.items[row_id] = item.model_copy(update={"quantity": quantity})

    async def _commit_quantity(self, row_id: RowId, quantity: int) -> None:
        item = self.items.get(row_id)
        if item is None:
            return
        if self.is_guest:
            await self._store(self.repo.update_quantity, self.session_key, item.variant_id, quantity)
        else:
            await asyncio.to_thread(self.client.update_cart_item, item.variant_id, quantity)

    def _on_commit_error(self, row_id: RowId, error: Exception) -> None:
        message = error.message if isinstance(error, NetworkError) else str(error)
        self.errors.append(message)

    def _mark_voucher_changed(self, applied: AppliedVoucher | None) -> None:
        self._voucher_changed = True

    async def _save_voucher(self) -> None:
        if not self._voucher_changed:
            return
        self._voucher_changed = False
        if self.vouchers.applied is None:
            await self._store(self.repo.delete_voucher, self.session_key)
        else:
            await self._store(self.repo.save_voucher, self.session_key, self.vouchers.voucher)

    async def _store(self, fn: Callable, *args):
        async with self._store_lock:
            return await asyncio.to_thread(fn, *args)

    def _parse_cart(self, body: Dict[str, Any]) -> List[CartItem]:
        data = body.get("data")
        if isinstance(data, dict):
            if data.get("phigiaohang") is not None:
                self.shipping_fee = Decimal(str(data["phigiaohang"]))
            data = data.get("items") or data.get("giohang") or []
        items = []
        for raw in data or []:
            try:
                items.append(CartItem.model_validate(raw))
            except SchemaError as e:
                logger.warning(f"Skipping malformed cart line {raw}: {e}")
        return items
