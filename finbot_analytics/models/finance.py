# SQLAlchemy models: money entries and budgets

from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, Index
from finbot_analytics.models.base import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String)  # income / expense
    amount = Column(Numeric(14, 2))
    currency = Column(String)
    source = Column(String)
    category_id = Column(Integer)
    date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_transactions_user_created', 'user_id', 'created_at'),
        Index('idx_transactions_created', 'created_at'),
    )


class Budget(Base):
    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer)
    currency = Column(String)
    start_date = Column(Date)
    end_date = Column(Date)
