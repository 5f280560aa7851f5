#every model imported here so SQLAlchemy registers it in Base.metadata

from storefront.data.models.guest_cart_item import GuestCartItemModel
from storefront.data.models.applied_voucher import AppliedVoucherModel

__all__ = ["GuestCartItemModel", "AppliedVoucherModel"]
