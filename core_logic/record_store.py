"""Контракт хранилища записей с двумя зонами видимости (owner / shared)."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Type

from pydantic import BaseModel

from .schemas import Couple, DailyEntry, InviteShare, Realm, RecordKind

RECORD_MODELS: Dict[RecordKind, Type[BaseModel]] = {
    RecordKind.COUPLE: Couple,
    RecordKind.INVITE: InviteShare,
    RecordKind.DAILY_ENTRY: DailyEntry,
}

RANGE_SUFFIXES = ("__gte", "__lte")


def split_filter_key(key: str):
    """
    Разбирает ключ фильтра query() на имя поля и оператор.

    Examples:
        >>> split_filter_key("date__gte")
        ('date', 'gte')
        >>> split_filter_key("couple_id")
        ('couple_id', 'eq')
    """
    for suffix in RANGE_SUFFIXES:
        if key.endswith(suffix):
            return key[: -len(suffix)], suffix[2:]
    return key, "eq"


class RecordStore(ABC):
    """
    Хранилище записей Couple / Invite / DailyEntry.

    Зона OWNER видна только создателю записи, зона SHARED - второй стороне
    пары после принятия приглашения. Реализации сами определяют текущую
    личность через IdentityProvider, переданный при создании.

    Ошибки: NotFoundError, ConflictError, PermissionDeniedError,
    AlreadyClaimedError, BackendError, NotInitializedError (core_logic.errors).
    """

    @abstractmethod
    async def create(self, kind: RecordKind, fields: Mapping[str, Any], realm: Realm = Realm.OWNER) -> str:
        """Создает запись и возвращает ее id. Дубликат id -> ConflictError."""

    @abstractmethod
    async def fetch(self, kind: RecordKind, record_id: str, realm: Realm) -> BaseModel:
        """Возвращает запись, видимую в зоне realm, иначе NotFoundError."""

    @abstractmethod
    async def query(self, kind: RecordKind, where: Mapping[str, Any], realm: Realm) -> List[BaseModel]:
        """
        Возвращает записи зоны realm, удовлетворяющие фильтру.

        where: {"поле": значение} - равенство, {"поле__gte": x} / {"поле__lte": x} - диапазон.
        """

    @abstractmethod
    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        fields: Mapping[str, Any],
        expected_version: int,
        realm: Realm = Realm.OWNER,
    ) -> BaseModel:
        """Обновляет запись, если ее версия равна expected_version, иначе ConflictError."""

    @abstractmethod
    async def delete(self, kind: RecordKind, record_id: str) -> None:
        """Удаляет собственную запись."""

    @abstractmethod
    async def claim(self, token: str) -> Couple:
        """
        Принимает приглашение по токену для текущей личности.

        Выполняется на стороне хранилища одной операцией: отмечает приглашение
        принятым и назначает partner_identity, только если у пары еще нет партнера.
        Использованный или отозванный токен -> AlreadyClaimedError.
        """


def to_model(kind: RecordKind, data: Mapping[str, Any]) -> BaseModel:
    """Преобразует словарь полей в Pydantic модель нужного типа."""
    return RECORD_MODELS[kind].model_validate(dict(data))
