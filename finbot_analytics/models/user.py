# SQLAlchemy models: users and per-user records

from sqlalchemy import Column, BigInteger, Integer, String, Boolean, DateTime, ForeignKey
from finbot_analytics.models.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    telegram_id = Column(BigInteger, unique=True, index=True)
    username = Column(String)
    display_name = Column(String)
    language = Column(String)
    default_currency = Column(String)
    is_premium = Column(Boolean, default=False)
    onboarding_stage = Column(String)
    timezone = Column(String)
    is_blocked = Column(Boolean, default=False)
    terms_accepted_at = Column(DateTime(timezone=True))
    privacy_accepted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), index=True)


class UserCard(Base):
    __tablename__ = "user_cards"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True))


class UserNotification(Base):
    __tablename__ = "user_notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    code = Column(String)
    sent_at = Column(DateTime(timezone=True))
