# Storefront test suite - shared fixtures
#
# - FakeClient: in-memory stand-in for StorefrontClient, records every call
# - wire builders for orders and cart lines in the backend's field names
# - in-memory SQLite session for the local cart store

import threading
from typing import Any, Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.data import models  # noqa: F401
from storefront.data.database import Base
from storefront.domain.errors import NetworkError
from storefront.repos.cart_repo import CartRepo
from storefront.services.storefront_client import AuthContext


def wire_line(variant_id: int, quantity: int, price: int, original: int | None = None) -> Dict[str, Any]:
    return {
        "id_bienthe": variant_id,
        "soluong": quantity,
        "dongia": price,
        "tensanpham": f"Product {variant_id}",
        "bienthe": {"giagoc": original if original is not None else price},
    }


def wire_order(
    order_id: int,
    code: str | None = None,
    status: str = "Chờ xử lý",
    payment: str = "Chưa thanh toán",
    lines: List[Dict[str, Any]] | None = None,
    **extra,
) -> Dict[str, Any]:
    lines = lines if lines is not None else [wire_line(100 + order_id, 1, 100000)]
    body = {
        "id": order_id,
        "madon": code or f"DH{order_id}",
        "trangthai": status,
        "trangthaithanhtoan": payment,
        "chitietdonhang": lines,
        "tamtinh": sum(l["dongia"] * l["soluong"] for l in lines),
        "phigiaohang": 0,
        "giagiam": 0,
    }
    body["thanhtien"] = body["tamtinh"]
    body.update(extra)
    return body


def wire_page(orders: List[Dict[str, Any]], last_page: int = 1) -> Dict[str, Any]:
    return {"data": {"data": orders, "last_page": last_page}}


class FakeClient:
    """
    Records calls as (name, *args). `responses[name]` may hold a body, an
    exception to raise or a callable taking the call arguments.
    """

    def __init__(self, auth: AuthContext | None = None):
        self.auth = auth or AuthContext(token="token-1")
        self.calls: List[tuple] = []
        self.responses: Dict[str, Any] = {}
        self.pages: Dict[int, Any] = {}
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.cart: List[Dict[str, Any]] = []
        self.vouchers: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def _record(self, name: str, *args):
        with self._lock:
            self.calls.append((name, *args))
        result = self.responses.get(name, {})
        if callable(result):
            result = result(*args)
        if isinstance(result, Exception):
            raise result
        return result

    def list_orders(self, page: int = 1):
        self._record("list_orders", page)
        result = self.pages.get(page, wire_page([]))
        if callable(result):
            result = result(page)
        if isinstance(result, Exception):
            raise result
        return result

    def get_order(self, code: str):
        self._record("get_order", code)
        if code not in self.orders:
            raise NetworkError(f"Order {code} not found", status_code=404)
        return {"data": self.orders[code]}

    def cancel_order(self, order_id: int, code: str):
        return self._record("cancel_order", order_id, code)

    def reorder_items(self, payload):
        return self._record("reorder_items", payload)

    def reorder_order(self, order_id: int, payload=None):
        return self._record("reorder_order", order_id, payload)

    def assign_payment_method(self, order_id: int, method_code: str):
        return self._record("assign_payment_method", order_id, method_code)

    def update_order_status(self, order_id: int, status: str, payment_status: str):
        return self._record("update_order_status", order_id, status, payment_status)

    def request_payment_url(self, order_id: int):
        return self._record("request_payment_url", order_id)

    def get_cart(self):
        self._record("get_cart")
        return {"data": self.cart}

    def add_cart_item(self, variant_id: int, quantity: int):
        return self._record("add_cart_item", variant_id, quantity)

    def update_cart_item(self, variant_id: int, quantity: int):
        return self._record("update_cart_item", variant_id, quantity)

    def remove_cart_item(self, variant_id: int):
        return self._record("remove_cart_item", variant_id)

    def list_vouchers(self):
        self._record("list_vouchers")
        return list(self.vouchers)


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def guest_client() -> FakeClient:
    return FakeClient(AuthContext(token=None, session_key="guest-abc"))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def repo(session_factory):
    db = session_factory()
    yield CartRepo(db)
    db.close()
