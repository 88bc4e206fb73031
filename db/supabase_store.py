"""RecordStore и IdentityProvider поверх Supabase (PostgREST + Auth)."""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx
from postgrest.exceptions import APIError
from pydantic import BaseModel
from supabase import Client

from core_logic.errors import (
    AlreadyClaimedError,
    BackendError,
    CheckinError,
    ConflictError,
    NotFoundError,
    NotInitializedError,
    PermissionDeniedError,
)
from core_logic.identity import IdentityProvider
from core_logic.record_store import RecordStore, split_filter_key, to_model
from core_logic.schemas import Couple, Realm, RecordKind
from db.converters import to_column_values

logger = logging.getLogger(__name__)

TABLES = {
    RecordKind.COUPLE: "couples",
    RecordKind.INVITE: "invites",
    RecordKind.DAILY_ENTRY: "daily_entries",
}

ID_PREFIXES = {
    RecordKind.COUPLE: "Couple",
    RecordKind.INVITE: "Invite",
}

SYSTEM_FIELDS = {"version", "created_at", "updated_at"}

# Коды ошибок функции claim_invite (db/supabase_schema.sql)
CLAIM_ERRORS = {
    "invite_not_found": NotFoundError,
    "already_claimed": AlreadyClaimedError,
    "own_invite": PermissionDeniedError,
}


def _serialize(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Готовит значения к передаче в PostgREST (даты - ISO строки)."""
    result = {}
    for name, value in to_column_values(values).items():
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        result[name] = value
    return result


def _translate(error: Exception, operation: str) -> CheckinError:
    if isinstance(error, APIError):
        if error.code == "23505":
            return ConflictError("Запись с такими данными уже существует")
        if error.code == "42501":
            return PermissionDeniedError(error.message or "")
        for marker, error_class in CLAIM_ERRORS.items():
            if marker in (error.message or ""):
                return error_class()
    logger.error(f"Ошибка Supabase при {operation}: {error}")
    return BackendError(str(error))


class SupabaseRecordStore(RecordStore):
    """
    Хранилище записей в Supabase с зонами видимости, вычисляемыми фильтрами.

    Клиент работает с service role ключом, поэтому права проверяются здесь,
    а принятие приглашения выполняется атомарно функцией claim_invite в БД.
    """

    def __init__(self, client: Client, identity_provider: IdentityProvider):
        self.client = client
        self.identity_provider = identity_provider

    async def _identity(self) -> str:
        identity = await self.identity_provider.current_identity()
        if not identity:
            raise NotInitializedError("Нет активной сессии пользователя")
        return identity

    def _table(self, kind: RecordKind):
        return self.client.table(TABLES[kind])

    def _execute(self, request, operation: str) -> List[Dict[str, Any]]:
        try:
            return request.execute().data or []
        except (APIError, httpx.HTTPError) as e:
            raise _translate(e, operation) from e

    # ==================== Зоны видимости ====================

    def _paired_couple_ids(self, identity: str) -> List[str]:
        rows = self._execute(
            self._table(RecordKind.COUPLE)
            .select("id, partner_identity")
            .or_(f"owner_identity.eq.{identity},partner_identity.eq.{identity}"),
            "поиске пар",
        )
        return [row["id"] for row in rows if row.get("partner_identity")]

    def _claimed_couple_ids(self, identity: str) -> List[str]:
        rows = self._execute(
            self._table(RecordKind.INVITE).select("couple_id").eq("claimed_by", identity),
            "поиске приглашений",
        )
        return [row["couple_id"] for row in rows]

    def _select_visible(self, kind: RecordKind, identity: str, realm: Realm, where: Mapping[str, Any]) -> List[Dict[str, Any]]:
        request = self._table(kind).select("*")
        if kind == RecordKind.COUPLE:
            if realm == Realm.OWNER:
                request = request.eq("owner_identity", identity)
            else:
                ids = self._claimed_couple_ids(identity)
                condition = f"partner_identity.eq.{identity}"
                if ids:
                    condition += f",id.in.({','.join(ids)})"
                request = request.or_(condition)
        elif kind == RecordKind.INVITE:
            field = "owner_identity" if realm == Realm.OWNER else "claimed_by"
            request = request.eq(field, identity)
        else:
            request = request.eq("realm", realm.value)
            if realm == Realm.OWNER:
                request = request.eq("author_identity", identity)
            else:
                paired = self._paired_couple_ids(identity)
                if not paired:
                    return []
                request = request.in_("couple_id", paired)

        for key, value in _serialize(where).items():
            field, op = split_filter_key(key)
            if op == "gte":
                request = request.gte(field, value)
            elif op == "lte":
                request = request.lte(field, value)
            elif value is None:
                request = request.is_(field, "null")
            else:
                request = request.eq(field, value)
        return self._execute(request.order("created_at"), f"чтении {kind.value}")

    def _get_row(self, kind: RecordKind, record_id: str) -> Optional[Dict[str, Any]]:
        rows = self._execute(self._table(kind).select("*").eq("id", record_id), f"чтении {record_id}")
        return rows[0] if rows else None

    def _can_share(self, couple_id: Optional[str], identity: str) -> bool:
        return bool(couple_id) and couple_id in self._paired_couple_ids(identity)

    # ==================== Операции ====================

    async def create(self, kind: RecordKind, fields: Mapping[str, Any], realm: Realm = Realm.OWNER) -> str:
        identity = await self._identity()
        values = _serialize({k: v for k, v in fields.items() if k not in SYSTEM_FIELDS})
        if kind == RecordKind.DAILY_ENTRY:
            if values.get("author_identity") != identity:
                raise PermissionDeniedError("Запись можно создать только от своего имени")
            if realm == Realm.SHARED and not self._can_share(values.get("couple_id"), identity):
                raise PermissionDeniedError("Общая зона недоступна: пара не собрана")
            values["realm"] = realm.value
        else:
            if realm != Realm.OWNER:
                raise PermissionDeniedError(f"{kind.value} создается только в зоне владельца")
            values["owner_identity"] = identity
            values.setdefault("id", f"{ID_PREFIXES[kind]}_{uuid.uuid4()}")
        if not values.get("id"):
            raise ValueError("Не указан id записи")

        values["version"] = 1
        self._execute(self._table(kind).insert(values), f"создании {kind.value}")
        logger.info(f"Создана запись {values['id']} в зоне {realm.value}")
        return values["id"]

    async def fetch(self, kind: RecordKind, record_id: str, realm: Realm) -> BaseModel:
        identity = await self._identity()
        rows = self._select_visible(kind, identity, realm, {"id": record_id})
        if not rows:
            raise NotFoundError(f"{record_id} не найдена в зоне {realm.value}")
        return to_model(kind, rows[0])

    async def query(self, kind: RecordKind, where: Mapping[str, Any], realm: Realm) -> List[BaseModel]:
        identity = await self._identity()
        return [to_model(kind, row) for row in self._select_visible(kind, identity, realm, where)]

    def _check_update(
        self, kind: RecordKind, row: Dict[str, Any], values: Dict[str, Any], identity: str, realm: Realm
    ) -> None:
        if kind == RecordKind.COUPLE:
            if "owner_identity" in values and values["owner_identity"] != row["owner_identity"]:
                raise PermissionDeniedError("Создателя пары изменить нельзя")
            partner = values.get("partner_identity", row.get("partner_identity"))
            if row.get("partner_identity") and partner != row["partner_identity"]:
                raise AlreadyClaimedError("У пары уже есть партнер")
            if realm == Realm.SHARED:
                if set(values) - {"partner_identity", "invite_token"}:
                    raise PermissionDeniedError("Партнер может изменить только связь с парой")
                if "partner_identity" in values and partner != identity:
                    raise PermissionDeniedError("Партнером можно указать только себя")
            if values.get("partner_identity") and not row.get("partner_identity"):
                if self._paired_couple_ids(values["partner_identity"]) or self._paired_couple_ids(row["owner_identity"]):
                    raise AlreadyClaimedError("Участник уже состоит в другой паре")
        elif kind == RecordKind.INVITE:
            if realm != Realm.OWNER or set(values) - {"revoked"}:
                raise PermissionDeniedError("Приглашение может только отозвать его владелец")
        else:
            if values.get("author_identity", identity) != identity:
                raise PermissionDeniedError("Автора записи изменить нельзя")
            couple_id = values.get("couple_id", row.get("couple_id"))
            if realm == Realm.SHARED and not self._can_share(couple_id, identity):
                raise PermissionDeniedError("Общая зона недоступна: пара не собрана")
            values["realm"] = realm.value

    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        fields: Mapping[str, Any],
        expected_version: int,
        realm: Realm = Realm.OWNER,
    ) -> BaseModel:
        identity = await self._identity()
        values = _serialize({k: v for k, v in fields.items() if k not in SYSTEM_FIELDS and k != "id"})

        if kind == RecordKind.DAILY_ENTRY:
            row = self._get_row(kind, record_id)
            if row is not None and row["author_identity"] != identity:
                raise PermissionDeniedError("Изменять можно только свои записи")
        else:
            rows = self._select_visible(kind, identity, realm, {"id": record_id})
            row = rows[0] if rows else None
        if row is None:
            raise NotFoundError(f"{record_id} не найдена в зоне {realm.value}")
        if row["version"] != expected_version:
            raise ConflictError(f"Версия {record_id} изменилась: {row['version']} != {expected_version}")

        self._check_update(kind, row, values, identity, realm)
        values["version"] = expected_version + 1
        values["updated_at"] = datetime.now(timezone.utc).isoformat()
        if kind == RecordKind.INVITE:
            values.pop("updated_at")

        rows = self._execute(
            self._table(kind).update(values).eq("id", record_id).eq("version", expected_version),
            f"обновлении {record_id}",
        )
        if not rows:
            raise ConflictError(f"Запись {record_id} изменена параллельно")
        logger.info(f"Обновлена запись {record_id} (версия {expected_version + 1})")
        return to_model(kind, rows[0])

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        identity = await self._identity()
        row = self._get_row(kind, record_id)
        if row is None:
            raise NotFoundError(f"{record_id} не найдена")
        owner_field = "author_identity" if kind == RecordKind.DAILY_ENTRY else "owner_identity"
        if row[owner_field] != identity:
            raise PermissionDeniedError("Удалять можно только свои записи")
        self._execute(self._table(kind).delete().eq("id", record_id), f"удалении {record_id}")
        logger.info(f"Удалена запись {record_id}")

    async def claim(self, token: str) -> Couple:
        identity = await self._identity()
        rows = self._execute(
            self.client.rpc("claim_invite", {"p_token": token, "p_identity": identity}),
            "принятии приглашения",
        )
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise NotFoundError("Приглашение не найдено")
        couple = Couple.model_validate(rows[0])
        logger.info(f"Пользователь {identity} присоединился к паре {couple.id}")
        return couple


class SupabaseIdentityProvider(IdentityProvider):
    """Identity из сессии Supabase Auth (id пользователя)."""

    def __init__(self, client: Client):
        super().__init__()
        self.client = client
        self._subscription = client.auth.on_auth_state_change(self._on_auth_change)

    async def current_identity(self) -> Optional[str]:
        session = self.client.auth.get_session()
        if session is None or session.user is None:
            return None
        return session.user.id

    def _on_auth_change(self, event, session) -> None:
        identity = session.user.id if session is not None and session.user is not None else None
        logger.info(f"Событие авторизации {event}: identity={identity}")
        self._emit(identity)

    def close(self) -> None:
        """Отписывается от событий Supabase Auth."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
