"""
SQLAlchemy ORM Models for PayGate

Defines database models matching the schema in init_db.py.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, Float, DateTime, CheckConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class PaymentModel(Base):
    """
    ORM model for payments table.

    One row per tracked payment; provider_reference correlates callbacks.
    """
    __tablename__ = "payments"

    id = Column(String, primary_key=True)
    amount = Column(Float, nullable=False)
    phone = Column(String, nullable=False)
    reference = Column(String, nullable=False)
    status = Column(String, nullable=False, default="PENDING", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    completed_at = Column(DateTime(timezone=True))
    provider_reference = Column(String, unique=True, index=True)
    merchant_request_id = Column(String)
    result_code = Column(String)
    result_desc = Column(String)
    receipt_number = Column(String)

    __table_args__ = (
        CheckConstraint("status IN ('PENDING', 'SUCCESS', 'FAILED')", name="status_check"),
        CheckConstraint(
            "(status = 'PENDING' AND completed_at IS NULL) OR "
            "(status != 'PENDING' AND completed_at IS NOT NULL)",
            name="completed_at_check",
        ),
    )
