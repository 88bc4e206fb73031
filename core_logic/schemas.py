"""Pydantic models for data structures."""

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum


class Mood(str, Enum):
    """Настроение дня (вечерний чек-ин)."""
    GREAT = "great"
    OKAY = "okay"
    DIFFICULT = "difficult"

    @property
    def display_name(self) -> str:
        return {
            Mood.GREAT: "Отлично",
            Mood.OKAY: "Нормально",
            Mood.DIFFICULT: "Тяжело",
        }[self]


class PromptType(str, Enum):
    """Тип ежедневного вопроса."""
    MORNING = "morning"
    EVENING = "evening"


class Realm(str, Enum):
    """Зона видимости в хранилище."""
    OWNER = "owner"
    SHARED = "shared"


class RecordKind(str, Enum):
    """Типы записей в хранилище."""
    COUPLE = "Couple"
    INVITE = "Invite"
    DAILY_ENTRY = "DailyEntry"


class Couple(BaseModel):
    """Пара: связь двух аккаунтов."""
    id: str = Field(min_length=1)
    owner_identity: str = Field(min_length=1, description="Создатель пары")
    partner_identity: Optional[str] = None
    invite_token: Optional[str] = None
    version: int = Field(default=1, ge=1)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_paired(self) -> bool:
        return bool(self.partner_identity)

    def is_member(self, identity: str) -> bool:
        return identity in (self.owner_identity, self.partner_identity)

    def partner_of(self, identity: str) -> Optional[str]:
        """Возвращает вторую сторону пары для identity (None, если пары еще нет)."""
        if identity == self.owner_identity:
            return self.partner_identity
        if identity == self.partner_identity:
            return self.owner_identity
        return None


class InviteShare(BaseModel):
    """Одноразовое приглашение (share), привязанное к паре."""
    id: str = Field(min_length=1)
    couple_id: str
    token: str = Field(min_length=1)
    owner_identity: str
    claimed_by: Optional[str] = None
    revoked: bool = False
    version: int = Field(default=1, ge=1)
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return not self.revoked and self.claimed_by is None


class InviteLink(BaseModel):
    """Результат создания приглашения: токен и ссылка для передачи партнеру."""
    couple_id: str
    token: str
    url: str
    share_id: Optional[str] = None


class DailyEntry(BaseModel):
    """Запись одного автора за один календарный день."""
    id: str = Field(min_length=1)
    date: date
    author_identity: str = Field(min_length=1)
    couple_id: Optional[str] = None
    morning_need: Optional[str] = None
    evening_mood: Optional[Mood] = None
    gratitude: Optional[str] = None
    tomorrow_great: Optional[str] = None
    version: int = Field(default=1, ge=1)
    updated_at: Optional[datetime] = None


class EntryDraft(BaseModel):
    """Поля, введенные пользователем в текущем вопросе (могут быть пустыми)."""
    morning_need: Optional[str] = None
    evening_mood: Optional[Mood] = None
    gratitude: Optional[str] = None
    tomorrow_great: Optional[str] = None


class PairingState(BaseModel):
    """Состояние связи с партнером."""
    is_paired: bool = False
    partner_identity: Optional[str] = None
    couple_id: Optional[str] = None


class DayEntries(BaseModel):
    """Записи за день, разделенные по авторам."""
    date: date
    mine: Optional[DailyEntry] = None
    partner: Optional[DailyEntry] = None


class WatchStatus(str, Enum):
    """Состояния наблюдателя за созданием пары."""
    IDLE = "idle"
    POLLING = "polling"
    PAIRED = "paired"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
