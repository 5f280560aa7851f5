#storefront/data/models/guest_cart_item.py
from sqlalchemy import Column, Integer, Numeric, String, UniqueConstraint

from storefront.data.database import Base


class GuestCartItemModel(Base):
    __tablename__ = "guest_cart_items"
    __table_args__ = (UniqueConstraint("session_key", "variant_id"),)

    id = Column(Integer, primary_key=True)
    session_key = Column(String, nullable=False, index=True)
    variant_id = Column(Integer, nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    original_price = Column(Numeric(12, 2), nullable=False)

    product_name = Column(String, nullable=False, default="Sản phẩm")
    image = Column(String, nullable=True)
    variant_label = Column(String, nullable=True)
