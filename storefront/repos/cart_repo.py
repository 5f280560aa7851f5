# storefront/repos/cart_repo.py
import json
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from storefront.data.models.applied_voucher import AppliedVoucherModel
from storefront.data.models.guest_cart_item import GuestCartItemModel
from storefront.domain.schemas import CartItem, ProductSnapshot, Voucher


class CartRepo:
    """
    Local session store: guest cart lines and the applied voucher, keyed by
    the session key of the shopper.
    """

    def __init__(self, db: Session):
        self.db = db

    # guest cart

    def get_items(self, session_key: str) -> List[CartItem]:
        rows = (
            self.db.query(GuestCartItemModel)
            .filter(GuestCartItemModel.session_key == session_key)
            .order_by(GuestCartItemModel.id)
            .all()
        )
        return [self._to_item(r) for r in rows]

    def get_item(self, session_key: str, variant_id: int) -> GuestCartItemModel | None:
        return (
            self.db.query(GuestCartItemModel)
            .filter(
                GuestCartItemModel.session_key == session_key,
                GuestCartItemModel.variant_id == variant_id,
            )
            .first()
        )

    def add_item(self, session_key: str, item: CartItem) -> CartItem:
        row = self.get_item(session_key, item.variant_id)
        if row:
            row.quantity += item.quantity
            row.unit_price = item.unit_price  # latest price wins
            row.original_price = item.original_price
        else:
            row = GuestCartItemModel(
                session_key=session_key,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                original_price=item.original_price,
                product_name=item.product.name,
                image=item.product.image,
                variant_label=item.product.variant_label,
            )
            self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return self._to_item(row)

    def update_quantity(self, session_key: str, variant_id: int, quantity: int) -> bool:
        row = self.get_item(session_key, variant_id)
        if not row:
            return False
        row.quantity = quantity
        self.db.commit()
        return True

    def delete_item(self, session_key: str, variant_id: int) -> None:
        self.db.query(GuestCartItemModel).filter(
            GuestCartItemModel.session_key == session_key,
            GuestCartItemModel.variant_id == variant_id,
        ).delete()
        self.db.commit()

    # applied voucher

    def get_voucher(self, session_key: str) -> Voucher | None:
        row = self._voucher_row(session_key)
        return Voucher.model_validate(json.loads(row.payload)) if row else None

    def save_voucher(self, session_key: str, voucher: Voucher) -> None:
        row = self._voucher_row(session_key)
        if row is None:
            row = AppliedVoucherModel(session_key=session_key)
            self.db.add(row)
        row.code = voucher.code
        row.payload = json.dumps(voucher.model_dump(mode="json"))
        self.db.commit()

    def delete_voucher(self, session_key: str) -> None:
        self.db.query(AppliedVoucherModel).filter(
            AppliedVoucherModel.session_key == session_key
        ).delete()
        self.db.commit()

    def _voucher_row(self, session_key: str) -> AppliedVoucherModel | None:
        return (
            self.db.query(AppliedVoucherModel)
            .filter(AppliedVoucherModel.session_key == session_key)
            .first()
        )

    @staticmethod
    def _to_item(row: GuestCartItemModel) -> CartItem:
        return CartItem(
            row_id=f"local_{row.variant_id}",
            variant_id=row.variant_id,
            quantity=row.quantity,
            unit_price=Decimal(row.unit_price),
            original_price=Decimal(row.original_price),
            product=ProductSnapshot(
                name=row.product_name,
                image=row.image,
                variant_label=row.variant_label,
            ),
        )
