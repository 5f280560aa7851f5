# storefront/domain/schemas.py
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field, model_validator

from storefront.domain.status import CanonicalStatus, classify
from storefront.utils.text import fold


def _first(data: Dict[str, Any], *keys, default=None):
    """First non-null value among keys, nested keys written as "a.b.c"."""
    for key in keys:
        value: Any = data
        for part in key.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            elif isinstance(value, list) and part.isdigit() and len(value) > int(part):
                value = value[int(part)]
            else:
                value = None
                break
        if value is not None:
            return value
    return default


def _to_date(value) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class PaymentMethodChoice(str, Enum):
    COD = "1"
    GATEWAY_QR = "3"
    MANUAL = "cp"

    @property
    def label(self) -> str:
        return _METHOD_LABELS[self]

    @property
    def requires_gateway(self) -> bool:
        return self is PaymentMethodChoice.GATEWAY_QR


_METHOD_LABELS = {
    PaymentMethodChoice.COD: "Thanh toán khi nhận hàng (COD)",
    PaymentMethodChoice.GATEWAY_QR: "Chuyển khoản qua cổng thanh toán (QR)",
    PaymentMethodChoice.MANUAL: "Thanh toán trực tiếp (thủ công)",
}


class ProductSnapshot(BaseModel):
    name: str = "Sản phẩm"
    image: str | None = None
    variant_label: str | None = None


def _snapshot(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": _first(data, "tensanpham", "name", "ten", "bienthe.sanpham.ten", default="Sản phẩm"),
        "image": _first(
            data,
            "hinhanh",
            "bienthe.sanpham.hinhanhsanpham.0.hinhanh",
            "bienthe.sanpham.hinhanh",
            "bienthe.hinhanh",
        ),
        "variant_label": _first(data, "tenloaibienthe", "bienthe.loaibienthe.ten", "bienthe.tenloaibienthe"),
    }


class OrderLineItem(BaseModel):
    """
    One line of a placed order. A line with unit_price == 0 is a gift line:
    it never counts towards pricing and is never bought again.
    """

    variant_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Decimal("0")
    original_price: Decimal = Decimal("0")
    product: ProductSnapshot = Field(default_factory=ProductSnapshot)

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data):
        if not isinstance(data, dict) or "variant_id" in data:
            return data
        unit_price = _first(data, "dongia", "price", "unit_price", default=0)
        return {
            "variant_id": _first(data, "id_bienthe", "bienthe.id"),
            "quantity": _first(data, "soluong", "quantity", default=1),
            "unit_price": unit_price,
            "original_price": _first(data, "bienthe.giagoc", "giagoc", "original_price", default=unit_price),
            "product": _snapshot(data),
        }

    @property
    def is_gift(self) -> bool:
        return self.unit_price == 0


class Order(BaseModel):
    id: int
    code: str
    items: List[OrderLineItem] = []
    order_status: str = ""
    payment_status: str = ""
    subtotal: Decimal = Decimal("0")
    shipping_fee: Decimal = Decimal("0")
    voucher_discount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    created_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data):
        if not isinstance(data, dict) or "code" in data:
            return data
        return {
            "id": data.get("id"),
            "code": _first(data, "madon", "code", default=""),
            "items": _first(data, "chitietdonhang", "items", default=[]),
            "order_status": _first(data, "trangthai", "order_status", default=""),
            "payment_status": _first(data, "trangthaithanhtoan", "payment_status", default=""),
            "subtotal": _first(data, "tamtinh", "subtotal", default=0),
            "shipping_fee": _first(data, "phigiaohang", "phivanchuyen.phi", "shipping_fee", default=0),
            "voucher_discount": _first(data, "giagiam", "magiamgia.giatri", "voucher_discount", default=0),
            "total": _first(data, "thanhtien", "total", default=0),
            "created_at": _first(data, "created_at"),
        }

    @property
    def canonical_status(self) -> CanonicalStatus:
        return classify(self.order_status, self.payment_status)

    @property
    def purchasable_items(self) -> List[OrderLineItem]:
        return [i for i in self.items if not i.is_gift]


class CartItem(BaseModel):
    row_id: int | str
    variant_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Decimal("0")
    original_price: Decimal = Decimal("0")
    product: ProductSnapshot = Field(default_factory=ProductSnapshot)

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data):
        if not isinstance(data, dict) or "row_id" in data:
            return data
        variant_id = _first(data, "id_bienthe", "bienthe.id")
        quantity = _first(data, "soluong", "quantity", default=1)
        unit_price = _first(data, "bienthe.giadagiam", "bienthe.giaban", "dongia", "price")
        if unit_price is None:
            line_total = _first(data, "thanhtien", default=0)
            unit_price = Decimal(str(line_total)) / max(int(quantity), 1)
        return {
            "row_id": _first(data, "id_giohang", "id", default=f"local_{variant_id}"),
            "variant_id": variant_id,
            "quantity": quantity,
            "unit_price": unit_price,
            "original_price": _first(data, "bienthe.giagoc", "giagoc", default=unit_price),
            "product": _snapshot(data),
        }

    @property
    def is_gift(self) -> bool:
        return self.unit_price == 0


_ACTIVE_STATUSES = {"hoat dong", "active", "1", "true"}


def parse_voucher_condition(condition: str | None, description: str | None = None) -> Decimal | None:
    """
    Minimum order amount hidden in a voucher's condition/description text.
    Largest 6+ digit number wins, otherwise "<N>k" means N * 1000.
    """
    cond = fold(condition)
    if cond == "tatca":
        return None
    text = f"{cond} {fold(description)}"
    big = re.findall(r"\d{6,}", text)
    if big:
        return Decimal(max(int(n) for n in big))
    thousands = re.search(r"(\d+)k", text)
    if thousands:
        return Decimal(int(thousands.group(1)) * 1000)
    return None


class Voucher(BaseModel):
    id: int | None = None
    code: str
    value: Decimal = Field(..., ge=0)
    description: str = ""
    min_order_amount: Decimal | None = None
    status: str = "active"
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "code" in data and "value" in data:
            condition = data.pop("condition", None)
            if condition is not None and data.get("min_order_amount") is None:
                data["min_order_amount"] = parse_voucher_condition(condition, data.get("description"))
        else:
            description = _first(data, "mota", "description", default="")
            min_amount = _first(data, "min_order_value", "min_order_amount")
            if min_amount in (None, "", 0):
                min_amount = parse_voucher_condition(_first(data, "dieukien", "condition"), description)
            data = {
                "id": data.get("id"),
                "code": str(_first(data, "magiamgia", "code", default="")),
                "value": _first(data, "giatri", "value", default=0),
                "description": description,
                "min_order_amount": min_amount,
                "status": _first(data, "trangthai", "status", default="active"),
                "start_date": _first(data, "ngaybatdau", "start_date"),
                "end_date": _first(data, "ngayketthuc", "end_date"),
            }
        data["start_date"] = _to_date(data.get("start_date"))
        data["end_date"] = _to_date(data.get("end_date"))
        return data

    @property
    def is_active(self) -> bool:
        return fold(self.status) in _ACTIVE_STATUSES

    def condition_met(self, subtotal: Decimal) -> bool:
        return self.min_order_amount is None or subtotal >= self.min_order_amount


class AppliedVoucher(BaseModel):
    voucher: Voucher
    applied_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def code(self) -> str:
        return self.voucher.code


class PricingSummary(BaseModel):
    subtotal: Decimal
    product_discount: Decimal
    voucher_discount: Decimal
    shipping_fee: Decimal
    total: Decimal
    gift_quantity: int = 0


class ReorderItem(BaseModel):
    variant_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)


class ReorderRequest(BaseModel):
    source_order_id: int
    items: List[ReorderItem]

    def to_payload(self) -> Dict[str, Any]:
        return {"items": [{"id_bienthe": i.variant_id, "soluong": i.quantity} for i in self.items]}


class ReorderResult(BaseModel):
    new_order_id: int | None = None
    message: str | None = None

    @property
    def has_new_order(self) -> bool:
        return self.new_order_id is not None


# http surface (BFF)

class QuantityIn(BaseModel):
    quantity: int = Field(..., description="New quantity for the cart line (>= 1)")


class AddItemIn(BaseModel):
    variant_id: int = Field(..., gt=0)
    quantity: int = Field(1, gt=0)
    # guests only, signed-in carts are priced by the backend
    unit_price: Decimal | None = Field(None, ge=0)
    original_price: Decimal | None = Field(None, ge=0)
    name: str | None = None
    image: str | None = None


class VoucherIn(BaseModel):
    code: str = Field(..., min_length=1)


class ShippingIn(BaseModel):
    fee: Decimal = Field(..., ge=0)


class ReorderIn(BaseModel):
    selection: Dict[int, int] | None = Field(
        None, description="variant_id -> quantity; 0 drops the line"
    )


class PaymentAction(str, Enum):
    RETRY = "retry"
    REORDER = "reorder"


class PaymentIn(BaseModel):
    action: PaymentAction
    method: PaymentMethodChoice


class CartOut(BaseModel):
    items: List[CartItem]
    summary: PricingSummary
    applied_voucher: Voucher | None = None
    pending: bool = False
    errors: List[str] = []


class OrderOut(BaseModel):
    order: Order
    status: CanonicalStatus
    status_label: str
    actions: List[str]


class OrderListOut(BaseModel):
    orders: List[OrderOut]
    counts: Dict[str, int]
    page: int
    total_pages: int
    failed_pages: List[int] = []


class PaymentOut(BaseModel):
    state: str
    order_id: int
    redirect_url: str | None = None
    message: str | None = None
