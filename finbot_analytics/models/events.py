# SQLAlchemy models: marketing and usage events
#
# These tables are written by the bot; rows may carry only a telegram_id
# when the user record did not exist yet.

from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey, Index
from finbot_analytics.models.base import Base

MINI_APP_SOURCE = "mini_app"


class MarketingEvent(Base):
    __tablename__ = "marketing_events"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    telegram_id = Column(BigInteger)
    event_name = Column(String)
    event_time = Column(DateTime(timezone=True))
    action_source = Column(String)
    source = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_marketing_source_user_created', 'source', 'user_id', 'created_at'),
    )


class UsageEvent(Base):
    __tablename__ = "usage_events"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    telegram_id = Column(BigInteger)
    feature = Column(String)
    created_at = Column(DateTime(timezone=True))


class InputUsage(Base):
    __tablename__ = "input_usage"

    id = Column(Integer, primary_key=True)
    telegram_id = Column(BigInteger, nullable=False)
    period_key = Column(String)
