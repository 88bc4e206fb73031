"""Repository pattern implementation for database access."""

from typing import Any, List, Mapping, Optional, TypeVar, Generic, Type
from sqlalchemy.orm import Session
from sqlalchemy import Select, select, update, and_, or_

from core_logic.record_store import split_filter_key
from core_logic.schemas import Realm
from db.models import Base, Couple, DailyEntry, Invite

T = TypeVar('T', bound=Base)


class BaseRepository(Generic[T]):
    """Базовый класс репозитория с общими CRUD операциями."""

    def __init__(self, session: Session, model: Type[T]):
        """
        Инициализирует репозиторий.

        Args:
            session: SQLAlchemy сессия
            model: SQLAlchemy модель класса
        """
        self.session = session
        self.model = model

    def create(self, entity: T) -> T:
        """
        Создает новую сущность в БД.

        Args:
            entity: SQLAlchemy модель сущности

        Returns:
            Созданная сущность
        """
        self.session.add(entity)
        self.session.flush()  # Ошибки уникальности всплывают здесь, без commit
        return entity

    def get_by_id(self, entity_id: str) -> Optional[T]:
        """
        Получает сущность по ID без учета зоны видимости.

        Args:
            entity_id: ID сущности

        Returns:
            Сущность или None, если не найдена
        """
        return self.session.get(self.model, entity_id)

    def conditional_update(self, entity_id: str, expected_version: int, values: Mapping[str, Any]) -> int:
        """
        Обновляет сущность, только если ее версия равна expected_version.

        Args:
            entity_id: ID сущности
            expected_version: Ожидаемая версия
            values: Новые значения колонок

        Returns:
            Количество обновленных строк (0 - версия не совпала или записи нет)
        """
        stmt = (
            update(self.model)
            .where(and_(self.model.id == entity_id, self.model.version == expected_version))
            .values(**dict(values), version=self.model.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.expire_all()
        return result.rowcount

    def delete(self, entity_id: str) -> bool:
        """
        Удаляет сущность по ID.

        Args:
            entity_id: ID сущности

        Returns:
            True если удаление успешно
        """
        entity = self.get_by_id(entity_id)
        if entity:
            self.session.delete(entity)
            self.session.flush()
            return True
        return False

    def apply_filters(self, stmt: Select, where: Mapping[str, Any]) -> Select:
        """
        Добавляет к запросу фильтры вида {"поле": значение, "поле__gte": значение}.

        Raises:
            ValueError: Если поле не существует в модели
        """
        for key, value in where.items():
            field, op = split_filter_key(key)
            column = getattr(self.model, field, None)
            if column is None:
                raise ValueError(f"Неизвестное поле фильтра: {field}")
            if op == "gte":
                stmt = stmt.where(column >= value)
            elif op == "lte":
                stmt = stmt.where(column <= value)
            elif value is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == value)
        return stmt

    def visibility_clause(self, identity: str, realm: Realm):
        raise NotImplementedError

    def get_visible(self, entity_id: str, identity: str, realm: Realm) -> Optional[T]:
        """Сущность по ID, если она видна identity в зоне realm."""
        stmt = select(self.model).where(
            and_(self.model.id == entity_id, self.visibility_clause(identity, realm))
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_visible(self, identity: str, realm: Realm, where: Optional[Mapping[str, Any]] = None) -> List[T]:
        """Сущности, видимые identity в зоне realm, с фильтром where."""
        stmt = select(self.model).where(self.visibility_clause(identity, realm))
        stmt = self.apply_filters(stmt, where or {})
        stmt = stmt.order_by(self.model.created_at.asc(), self.model.id.asc())
        return list(self.session.execute(stmt).scalars().all())


class CoupleRepository(BaseRepository[Couple]):
    """Репозиторий для работы с парами."""

    def __init__(self, session: Session):
        super().__init__(session, Couple)

    def visibility_clause(self, identity: str, realm: Realm):
        """
        Owner зона - пары, созданные identity.
        Shared зона - пары, где identity партнер или принял приглашение.
        """
        if realm == Realm.OWNER:
            return Couple.owner_identity == identity
        accepted = select(Invite.couple_id).where(Invite.claimed_by == identity)
        return or_(Couple.partner_identity == identity, Couple.id.in_(accepted))

    def claim_partner(self, couple_id: str, token: str, identity: str) -> int:
        """
        Назначает партнера, только если у пары его еще нет и токен совпадает.

        Returns:
            Количество обновленных строк (0 - пара уже собрана или токен устарел)
        """
        stmt = (
            update(Couple)
            .where(and_(
                Couple.id == couple_id,
                Couple.partner_identity.is_(None),
                Couple.invite_token == token,
            ))
            .values(partner_identity=identity, invite_token=None, version=Couple.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.expire_all()
        return result.rowcount

    def paired_ids_for(self, identity: str) -> Select:
        """Подзапрос id собранных пар, участником которых является identity."""
        return select(Couple.id).where(and_(
            Couple.partner_identity.is_not(None),
            or_(Couple.owner_identity == identity, Couple.partner_identity == identity),
        ))

    def has_pair(self, identity: str) -> bool:
        """Состоит ли identity в собранной паре (как создатель или как партнер)."""
        return self.session.execute(self.paired_ids_for(identity).limit(1)).first() is not None


class InviteRepository(BaseRepository[Invite]):
    """Репозиторий для работы с приглашениями."""

    def __init__(self, session: Session):
        super().__init__(session, Invite)

    def visibility_clause(self, identity: str, realm: Realm):
        if realm == Realm.OWNER:
            return Invite.owner_identity == identity
        return Invite.claimed_by == identity

    def get_by_token(self, token: str) -> Optional[Invite]:
        stmt = select(Invite).where(Invite.token == token)
        return self.session.execute(stmt).scalar_one_or_none()

    def mark_claimed(self, invite_id: str, identity: str) -> int:
        """
        Отмечает приглашение принятым, если оно еще открыто.

        Returns:
            Количество обновленных строк
        """
        stmt = (
            update(Invite)
            .where(and_(
                Invite.id == invite_id,
                Invite.claimed_by.is_(None),
                Invite.revoked.is_(False),
            ))
            .values(claimed_by=identity, version=Invite.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.expire_all()
        return result.rowcount


class DailyEntryRepository(BaseRepository[DailyEntry]):
    """Репозиторий для работы с ежедневными записями."""

    def __init__(self, session: Session):
        super().__init__(session, DailyEntry)

    def visibility_clause(self, identity: str, realm: Realm):
        """
        Owner зона - личные записи автора.
        Shared зона - записи в общей зоне собранной пары, где identity участник.
        """
        if realm == Realm.OWNER:
            return and_(DailyEntry.realm == Realm.OWNER.value, DailyEntry.author_identity == identity)
        paired = CoupleRepository(self.session).paired_ids_for(identity)
        return and_(DailyEntry.realm == Realm.SHARED.value, DailyEntry.couple_id.in_(paired))

    def can_share(self, couple_id: Optional[str], identity: str) -> bool:
        """Общая зона доступна, только если пара собрана и identity ее участник."""
        if not couple_id:
            return False
        stmt = CoupleRepository(self.session).paired_ids_for(identity).where(Couple.id == couple_id)
        return self.session.execute(stmt).first() is not None
