# SQLAlchemy models: payments and subscriptions

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Index
from finbot_analytics.models.base import Base


class PaymentHistory(Base):
    __tablename__ = "payment_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Numeric(14, 2))
    currency = Column(String)
    status = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_payment_history_created', 'created_at'),
    )


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String)  # active / payment_failed / cancelled
    plan_type = Column(String)  # weekly / monthly
    next_payment_date = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)
