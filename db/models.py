"""SQLAlchemy ORM models for database tables."""

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from core_logic.schemas import Realm

Base = declarative_base()


class Couple(Base):
    """SQLAlchemy модель пары."""
    __tablename__ = "couples"

    id = Column(String, primary_key=True)
    owner_identity = Column(String, nullable=False)
    partner_identity = Column(String, nullable=True, index=True)
    invite_token = Column(String, nullable=True, unique=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=True, default=func.current_timestamp())
    updated_at = Column(DateTime, nullable=True, default=func.current_timestamp(), onupdate=func.current_timestamp())

    # Одна пара на владельца: повторное создание с другого устройства -> IntegrityError
    __table_args__ = (
        UniqueConstraint("owner_identity", name="uq_couples_owner"),
    )


class Invite(Base):
    """SQLAlchemy модель приглашения (share)."""
    __tablename__ = "invites"

    id = Column(String, primary_key=True)
    couple_id = Column(String, ForeignKey("couples.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String, nullable=False, unique=True)
    owner_identity = Column(String, nullable=False)
    claimed_by = Column(String, nullable=True, index=True)
    revoked = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=True, default=func.current_timestamp())


class DailyEntry(Base):
    """SQLAlchemy модель ежедневной записи."""
    __tablename__ = "daily_entries"

    id = Column(String, primary_key=True)
    date = Column(Date, nullable=False)
    author_identity = Column(String, nullable=False)
    couple_id = Column(String, ForeignKey("couples.id", ondelete="SET NULL"), nullable=True)
    realm = Column(String, nullable=False, default=Realm.OWNER.value)
    morning_need = Column(String, nullable=True)
    evening_mood = Column(String, nullable=True)
    gratitude = Column(String, nullable=True)
    tomorrow_great = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=True, default=func.current_timestamp())
    updated_at = Column(DateTime, nullable=True, default=func.current_timestamp(), onupdate=func.current_timestamp())

    __table_args__ = (
        Index('idx_daily_entries_author_date', 'author_identity', 'date', unique=True),
        Index('idx_daily_entries_couple_date', 'couple_id', 'date'),
    )
