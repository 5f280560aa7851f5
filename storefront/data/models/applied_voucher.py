from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text

from storefront.data.database import Base


class AppliedVoucherModel(Base):
    __tablename__ = "applied_vouchers"

    id = Column(Integer, primary_key=True)
    session_key = Column(String, nullable=False, unique=True)
    code = Column(String, nullable=False)
    payload = Column(Text, nullable=False)  # Voucher as json
    applied_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
