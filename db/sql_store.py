"""RecordStore поверх SQLAlchemy (SQLite / PostgreSQL)."""

import logging
import uuid
from typing import Any, Callable, Dict, List, Mapping

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

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
from core_logic.record_store import RecordStore
from core_logic.schemas import Couple, Realm, RecordKind
from db.converters import (
    sqlalchemy_couple_to_pydantic,
    sqlalchemy_entry_to_pydantic,
    sqlalchemy_invite_to_pydantic,
    to_column_values,
)
from db.models import Couple as SQLCouple, DailyEntry as SQLDailyEntry, Invite as SQLInvite
from db.repositories import BaseRepository, CoupleRepository, DailyEntryRepository, InviteRepository
from db.session import get_db_session

logger = logging.getLogger(__name__)

# Поля, которыми управляет само хранилище
SYSTEM_FIELDS = {"version", "created_at", "updated_at"}

REPOSITORIES: Dict[RecordKind, Callable[[Session], BaseRepository]] = {
    RecordKind.COUPLE: CoupleRepository,
    RecordKind.INVITE: InviteRepository,
    RecordKind.DAILY_ENTRY: DailyEntryRepository,
}

CONVERTERS: Dict[RecordKind, Callable[[Any], BaseModel]] = {
    RecordKind.COUPLE: sqlalchemy_couple_to_pydantic,
    RecordKind.INVITE: sqlalchemy_invite_to_pydantic,
    RecordKind.DAILY_ENTRY: sqlalchemy_entry_to_pydantic,
}

ID_PREFIXES = {
    RecordKind.COUPLE: "Couple",
    RecordKind.INVITE: "Invite",
}


class SqlRecordStore(RecordStore):
    """
    Хранилище записей в реляционной БД, привязанное к личности пользователя.

    Зоны видимости вычисляются запросами:
    - Couple: owner - owner_identity, shared - partner_identity или принятое приглашение;
    - Invite: owner - owner_identity, shared - claimed_by;
    - DailyEntry: колонка realm; shared записи видят оба участника собранной пары.

    Каждый вызов выполняется в отдельной транзакции (db.session.get_db_session).
    """

    def __init__(self, session_factory: sessionmaker, identity_provider: IdentityProvider):
        """
        Args:
            session_factory: sessionmaker из db.config.get_session_factory
            identity_provider: Источник identity текущего пользователя
        """
        self.session_factory = session_factory
        self.identity_provider = identity_provider

    async def _identity(self) -> str:
        identity = await self.identity_provider.current_identity()
        if not identity:
            raise NotInitializedError("Нет активной сессии пользователя")
        return identity

    def _run(self, operation: str, action: Callable[[Session], Any]) -> Any:
        """Выполняет action в транзакции и переводит ошибки БД в ошибки ядра."""
        try:
            with get_db_session(self.session_factory) as session:
                return action(session)
        except CheckinError:
            raise
        except IntegrityError as e:
            logger.warning(f"Нарушение ограничения БД при {operation}: {e.orig}")
            raise ConflictError("Запись с такими данными уже существует") from e
        except SQLAlchemyError as e:
            logger.error(f"Ошибка БД при {operation}: {e}", exc_info=True)
            raise BackendError(str(e)) from e

    # ==================== Создание ====================

    async def create(self, kind: RecordKind, fields: Mapping[str, Any], realm: Realm = Realm.OWNER) -> str:
        identity = await self._identity()
        values = to_column_values({k: v for k, v in fields.items() if k not in SYSTEM_FIELDS})

        def action(session: Session) -> str:
            repo = REPOSITORIES[kind](session)
            if kind == RecordKind.DAILY_ENTRY:
                if values.get("author_identity") != identity:
                    raise PermissionDeniedError("Запись можно создать только от своего имени")
                if realm == Realm.SHARED and not repo.can_share(values.get("couple_id"), identity):
                    raise PermissionDeniedError("Общая зона недоступна: пара не собрана")
                values["realm"] = realm.value
            else:
                if realm != Realm.OWNER:
                    raise PermissionDeniedError(f"{kind.value} создается только в зоне владельца")
                values["owner_identity"] = identity
                values.setdefault("id", f"{ID_PREFIXES[kind]}_{uuid.uuid4()}")
            if not values.get("id"):
                raise ValueError("Не указан id записи")
            if repo.get_by_id(values["id"]) is not None:
                raise ConflictError(f"Запись {values['id']} уже существует")
            repo.create(repo.model(**values))
            return values["id"]

        record_id = self._run(f"создании {kind.value}", action)
        logger.info(f"Создана запись {record_id} в зоне {realm.value}")
        return record_id

    # ==================== Чтение ====================

    async def fetch(self, kind: RecordKind, record_id: str, realm: Realm) -> BaseModel:
        identity = await self._identity()

        def action(session: Session) -> BaseModel:
            entity = REPOSITORIES[kind](session).get_visible(record_id, identity, realm)
            if entity is None:
                raise NotFoundError(f"{record_id} не найдена в зоне {realm.value}")
            return CONVERTERS[kind](entity)

        return self._run(f"чтении {record_id}", action)

    async def query(self, kind: RecordKind, where: Mapping[str, Any], realm: Realm) -> List[BaseModel]:
        identity = await self._identity()
        filters = to_column_values(where)

        def action(session: Session) -> List[BaseModel]:
            entities = REPOSITORIES[kind](session).list_visible(identity, realm, filters)
            return [CONVERTERS[kind](entity) for entity in entities]

        return self._run(f"поиске {kind.value}", action)

    # ==================== Изменение ====================

    @staticmethod
    def _check_couple_change(entity: SQLCouple, values: Dict[str, Any], identity: str, realm: Realm) -> None:
        if "owner_identity" in values and values["owner_identity"] != entity.owner_identity:
            raise PermissionDeniedError("Создателя пары изменить нельзя")
        partner = values.get("partner_identity", entity.partner_identity)
        if entity.partner_identity and partner != entity.partner_identity:
            raise AlreadyClaimedError("У пары уже есть партнер")
        if realm == Realm.SHARED:
            if set(values) - {"partner_identity", "invite_token"}:
                raise PermissionDeniedError("Партнер может изменить только связь с парой")
            if "partner_identity" in values and partner != identity:
                raise PermissionDeniedError("Партнером можно указать только себя")

    def _check_entry_change(
        self, repo: DailyEntryRepository, entity: SQLDailyEntry, values: Dict[str, Any], identity: str, realm: Realm
    ) -> None:
        if values.get("author_identity", identity) != identity:
            raise PermissionDeniedError("Автора записи изменить нельзя")
        couple_id = values.get("couple_id", entity.couple_id)
        if realm == Realm.SHARED and not repo.can_share(couple_id, identity):
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
        values = to_column_values({k: v for k, v in fields.items() if k not in SYSTEM_FIELDS and k != "id"})

        def action(session: Session) -> BaseModel:
            repo = REPOSITORIES[kind](session)
            if kind == RecordKind.DAILY_ENTRY:
                entity = repo.get_by_id(record_id)
            else:
                entity = repo.get_visible(record_id, identity, realm)
            if entity is None:
                raise NotFoundError(f"{record_id} не найдена в зоне {realm.value}")
            if kind == RecordKind.DAILY_ENTRY and entity.author_identity != identity:
                raise PermissionDeniedError("Изменять можно только свои записи")
            if entity.version != expected_version:
                raise ConflictError(f"Версия {record_id} изменилась: {entity.version} != {expected_version}")

            if kind == RecordKind.COUPLE:
                self._check_couple_change(entity, values, identity, realm)
                if values.get("partner_identity") and not entity.partner_identity:
                    if repo.has_pair(values["partner_identity"]) or repo.has_pair(entity.owner_identity):
                        raise AlreadyClaimedError("Участник уже состоит в другой паре")
            elif kind == RecordKind.INVITE:
                if realm != Realm.OWNER or set(values) - {"revoked"}:
                    raise PermissionDeniedError("Приглашение может только отозвать его владелец")
            else:
                self._check_entry_change(repo, entity, values, identity, realm)

            if repo.conditional_update(record_id, expected_version, values) == 0:
                raise ConflictError(f"Запись {record_id} изменена параллельно")
            return CONVERTERS[kind](repo.get_by_id(record_id))

        updated = self._run(f"обновлении {record_id}", action)
        logger.info(f"Обновлена запись {record_id} (версия {updated.version})")
        return updated

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        identity = await self._identity()

        def action(session: Session) -> None:
            repo = REPOSITORIES[kind](session)
            entity = repo.get_by_id(record_id)
            if entity is None:
                raise NotFoundError(f"{record_id} не найдена")
            owner = entity.author_identity if kind == RecordKind.DAILY_ENTRY else entity.owner_identity
            if owner != identity:
                raise PermissionDeniedError("Удалять можно только свои записи")
            repo.delete(record_id)

        self._run(f"удалении {record_id}", action)
        logger.info(f"Удалена запись {record_id}")

    # ==================== Принятие приглашения ====================

    async def claim(self, token: str) -> Couple:
        identity = await self._identity()

        def action(session: Session) -> Couple:
            invites = InviteRepository(session)
            couples = CoupleRepository(session)
            invite: SQLInvite = invites.get_by_token(token)
            if invite is None:
                raise NotFoundError("Приглашение не найдено")
            if invite.revoked or invite.claimed_by:
                raise AlreadyClaimedError("Приглашение уже использовано")
            couple = couples.get_by_id(invite.couple_id)
            if couple is None:
                raise NotFoundError("Пара приглашения не найдена")
            if couple.owner_identity == identity:
                raise PermissionDeniedError("Нельзя принять собственное приглашение")
            if couples.has_pair(identity):
                raise AlreadyClaimedError("Ты уже состоишь в паре")
            if couples.has_pair(couple.owner_identity):
                raise AlreadyClaimedError("Автор приглашения уже состоит в другой паре")
            if couples.claim_partner(couple.id, token, identity) == 0:
                raise AlreadyClaimedError("У пары уже есть партнер")
            if invites.mark_claimed(invite.id, identity) == 0:
                raise AlreadyClaimedError("Приглашение уже использовано")
            return sqlalchemy_couple_to_pydantic(couples.get_by_id(couple.id))

        couple = self._run("принятии приглашения", action)
        logger.info(f"Пользователь {identity} присоединился к паре {couple.id}")
        return couple
