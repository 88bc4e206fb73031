"""Преобразование между SQLAlchemy ORM моделями и Pydantic моделями."""

from typing import Any, Dict, Mapping

from core_logic.schemas import (
    Couple,
    DailyEntry,
    InviteShare,
    Mood,
)
from db.models import (
    Couple as SQLCouple,
    DailyEntry as SQLDailyEntry,
    Invite as SQLInvite,
)


def sqlalchemy_couple_to_pydantic(sql_couple: SQLCouple) -> Couple:
    """
    Преобразует SQLAlchemy Couple в Pydantic Couple.

    Args:
        sql_couple: SQLAlchemy модель Couple

    Returns:
        Pydantic модель Couple
    """
    return Couple(
        id=sql_couple.id,
        owner_identity=sql_couple.owner_identity,
        partner_identity=sql_couple.partner_identity,
        invite_token=sql_couple.invite_token,
        version=sql_couple.version,
        created_at=sql_couple.created_at,
        updated_at=sql_couple.updated_at,
    )


def sqlalchemy_invite_to_pydantic(sql_invite: SQLInvite) -> InviteShare:
    return InviteShare(
        id=sql_invite.id,
        couple_id=sql_invite.couple_id,
        token=sql_invite.token,
        owner_identity=sql_invite.owner_identity,
        claimed_by=sql_invite.claimed_by,
        revoked=bool(sql_invite.revoked),
        version=sql_invite.version,
        created_at=sql_invite.created_at,
    )


def sqlalchemy_entry_to_pydantic(sql_entry: SQLDailyEntry) -> DailyEntry:
    """
    Преобразует SQLAlchemy DailyEntry в Pydantic DailyEntry.

    Args:
        sql_entry: SQLAlchemy модель DailyEntry

    Returns:
        Pydantic модель DailyEntry
    """
    return DailyEntry(
        id=sql_entry.id,
        date=sql_entry.date,
        author_identity=sql_entry.author_identity,
        couple_id=sql_entry.couple_id,
        morning_need=sql_entry.morning_need,
        evening_mood=Mood(sql_entry.evening_mood) if sql_entry.evening_mood else None,
        gratitude=sql_entry.gratitude,
        tomorrow_great=sql_entry.tomorrow_great,
        version=sql_entry.version,
        updated_at=sql_entry.updated_at,
    )


def to_column_values(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Готовит значения полей Pydantic моделей к записи в колонки.

    Enum сохраняются значением (Mood.GREAT -> "great").

    Args:
        fields: Поля записи

    Returns:
        Словарь значений для колонок
    """
    values = {}
    for name, value in fields.items():
        if isinstance(value, Mood):
            value = value.value
        values[name] = value
    return values
