# Cart session tests - signed-in (backend) and guest (local store) carts

import asyncio
import threading
from datetime import date
from decimal import Decimal

import pytest

from storefront.data.models.applied_voucher import AppliedVoucherModel
from storefront.domain.errors import NetworkError, ValidationError, VoucherError
from storefront.domain.schemas import AddItemIn
from storefront.repos.cart_repo import CartRepo
from storefront.services.cart_service import CartSession

DELAY = 0.02


def wire_cart_line(row_id, variant_id, quantity, price, original=None):
    return {
        "id_giohang": row_id,
        "id_bienthe": variant_id,
        "soluong": quantity,
        "thanhtien": price * quantity,
        "bienthe": {"giaban": price, "giagoc": original or price, "sanpham": {"ten": f"Product {variant_id}"}},
    }


VOUCHERS = [
    {
        "id": 1,
        "magiamgia": "GIAM50K",
        "giatri": 50000,
        "mota": "Đơn từ 300K",
        "dieukien": "300000",
        "trangthai": "Hoạt động",
        "ngaybatdau": "2025-01-01",
        "ngayketthuc": "2025-12-31",
    },
    {"id": 2, "magiamgia": "FREESHIP", "giatri": 20000, "dieukien": "tatca", "trangthai": "Hoạt động"},
]


def make_cart(client, repo):
    return CartSession(client, repo, delay=DELAY, today=lambda: date(2025, 6, 15))


@pytest.fixture
async def cart(client, repo):
    client.cart = [wire_cart_line(11, 1, 2, 100000, 150000), wire_cart_line(12, 2, 1, 0)]
    client.vouchers = VOUCHERS
    session = make_cart(client, repo)
    await session.load()
    yield session
    session.close()


class TestSignedInCart:

    async def test_load_and_summary(self, cart):
        assert list(cart.items) == [11, 12]
        summary = cart.summary
        assert summary.subtotal == Decimal("200000")
        assert summary.product_discount == Decimal("100000")
        assert summary.gift_quantity == 1

    async def test_quantity_edits_are_debounced(self, client, cart):
        client.calls.clear()
        for _ in range(3):
            cart.increment(11)

        assert cart.items[11].quantity == 5
        assert cart.summary.subtotal == Decimal("500000")
        assert client.calls == []

        await asyncio.sleep(DELAY * 5)
        assert client.calls == [("update_cart_item", 1, 5)]

    async def test_decrement_floor(self, cart):
        cart.set_quantity(11, 1)
        assert cart.decrement(11) is False
        assert cart.items[11].quantity == 1

    async def test_unknown_line(self, cart):
        with pytest.raises(ValidationError):
            cart.increment(999)

    async def test_remove_item(self, client, cart):
        await cart.remove_item(11)
        assert ("remove_cart_item", 1) in client.calls
        assert list(cart.items) == [12]

    async def test_failed_commit_is_reported(self, client, cart):
        client.responses["update_cart_item"] = NetworkError("Vượt quá tồn kho", status_code=422)
        cart.increment(11)

        await cart.flush()

        assert cart.to_out().errors == ["Vượt quá tồn kho"]
        assert cart.to_out().errors == []

    async def test_add_item_reloads_from_backend(self, client, cart):
        client.responses["add_cart_item"] = lambda variant, qty: client.cart.append(
            wire_cart_line(13, variant, qty, 30000)
        ) or {}

        item = await cart.add_item(AddItemIn(variant_id=3, quantity=2))

        assert item.row_id == 13
        assert cart.summary.subtotal == Decimal("260000")


class TestVouchers:

    async def test_apply_recomputes_and_persists(self, cart, repo):
        cart.set_quantity(11, 4)

        await cart.apply_voucher("giam50k")

        assert cart.summary.voucher_discount == Decimal("50000")
        assert cart.summary.total == Decimal("350000")
        assert repo.get_voucher(cart.session_key).code == "GIAM50K"

    async def test_stored_key_does_not_contain_the_token(self, client, cart, session_factory):
        await cart.apply_voucher("FREESHIP")

        db = session_factory()
        stored = [row.session_key for row in db.query(AppliedVoucherModel).all()]
        db.close()

        assert stored == [cart.session_key]
        assert client.auth.token not in stored[0]

    async def test_condition_not_met(self, cart):
        with pytest.raises(VoucherError):
            await cart.apply_voucher("GIAM50K")

    async def test_discount_drops_when_subtotal_falls_below_minimum(self, cart):
        cart.set_quantity(11, 4)
        await cart.apply_voucher("GIAM50K")

        cart.set_quantity(11, 1)

        assert cart.vouchers.applied is not None
        assert cart.summary.voucher_discount == 0

    async def test_remove_clears_persisted_choice(self, cart, repo):
        await cart.apply_voucher("FREESHIP")
        await cart.remove_voucher()
        assert repo.get_voucher(cart.session_key) is None
        assert cart.summary.voucher_discount == 0

    async def test_applied_voucher_survives_a_new_session(self, client, cart, session_factory):
        await cart.apply_voucher("FREESHIP")

        again = make_cart(client, CartRepo(session_factory()))
        await again.load()

        assert again.vouchers.applied.code == "FREESHIP"
        again.close()

    async def test_eligible_vouchers(self, cart):
        assert [v.code for v in await cart.eligible_vouchers()] == ["FREESHIP"]

    async def test_apply_by_id_and_shipping_fee(self, cart):
        cart.set_shipping_fee(15000)
        await cart.apply_voucher_id(2)

        summary = cart.summary
        assert summary.shipping_fee == Decimal("15000")
        assert summary.voucher_discount == Decimal("20000")
        assert summary.total == Decimal("195000")


class TestGuestCart:

    async def test_guest_cart_lives_in_local_store(self, guest_client, repo):
        cart = make_cart(guest_client, repo)
        await cart.load()

        item = await cart.add_item(AddItemIn(variant_id=8, quantity=1, unit_price=Decimal("120000"), name="Áo"))
        cart.increment(item.row_id)
        await cart.flush()

        stored = repo.get_items(cart.session_key)
        assert [(i.variant_id, i.quantity) for i in stored] == [(8, 2)]
        assert guest_client.calls == []
        cart.close()

    async def test_guest_needs_a_price(self, guest_client, repo):
        cart = make_cart(guest_client, repo)
        await cart.load()
        with pytest.raises(ValidationError):
            await cart.add_item(AddItemIn(variant_id=8))
        cart.close()

    async def test_guest_remove(self, guest_client, repo):
        cart = make_cart(guest_client, repo)
        await cart.load()
        item = await cart.add_item(AddItemIn(variant_id=8, unit_price=Decimal("1000")))

        await cart.remove_item(item.row_id)

        assert repo.get_items(cart.session_key) == []
        cart.close()

    async def test_local_store_runs_off_the_event_loop(self, guest_client, session_factory):
        repo = ThreadRecordingRepo(session_factory())
        cart = make_cart(guest_client, repo)
        await cart.load()

        item = await cart.add_item(AddItemIn(variant_id=8, unit_price=Decimal("1000")))
        cart.increment(item.row_id)
        await cart.flush()
        await cart.remove_item(item.row_id)

        assert repo.calls == ["get_items", "get_voucher", "add_item", "update_quantity", "delete_item"]
        assert threading.get_ident() not in repo.threads
        cart.close()
        repo.db.close()


class ThreadRecordingRepo(CartRepo):
    """Remembers which thread ran each store call."""

    def __init__(self, db):
        super().__init__(db)
        self.calls = []
        self.threads = set()

    def _seen(self, name):
        self.calls.append(name)
        self.threads.add(threading.get_ident())

    def get_items(self, session_key):
        self._seen("get_items")
        return super().get_items(session_key)

    def get_voucher(self, session_key):
        self._seen("get_voucher")
        return super().get_voucher(session_key)

    def add_item(self, session_key, item):
        self._seen("add_item")
        return super().add_item(session_key, item)

    def update_quantity(self, session_key, variant_id, quantity):
        self._seen("update_quantity")
        return super().update_quantity(session_key, variant_id, quantity)

    def delete_item(self, session_key, variant_id):
        self._seen("delete_item")
        return super().delete_item(session_key, variant_id)
