"""Синхронизация ежедневных записей: детерминированный id, merge-on-save, чтение по дням."""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from .config import CheckinSettings, get_settings
from .errors import (
    BackendError,
    ConflictError,
    EntryValidationError,
    NotFoundError,
    NotInitializedError,
    PermissionDeniedError,
)
from .identity import IdentityProvider
from .record_store import RecordStore
from .schemas import DailyEntry, DayEntries, EntryDraft, PromptType, Realm, RecordKind
from .state import CheckinState

logger = logging.getLogger(__name__)

# Запись сначала пишется в общую зону, чтобы партнер увидел ее сразу
WRITE_REALMS = (Realm.SHARED, Realm.OWNER)
READ_REALMS = (Realm.SHARED, Realm.OWNER)

MORNING_FIELDS = ("morning_need",)
EVENING_FIELDS = ("evening_mood", "gratitude", "tomorrow_great")

DayLike = Union[date, datetime]


def normalize_day(value: DayLike, tz=None) -> date:
    """
    Приводит дату или момент времени к календарному дню в часовом поясе приложения.

    Naive datetime считается локальным временем этого пояса.

    Args:
        value: date или datetime
        tz: Часовой пояс pytz (по умолчанию из настроек)

    Returns:
        date
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        tz = tz or get_settings().timezone
        return value.astimezone(tz).date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Ожидалась дата, получено: {type(value).__name__}")


def deterministic_id(day: DayLike, author_identity: str, tz=None) -> str:
    """
    Детерминированный id записи за день.

    Examples:
        >>> deterministic_id(date(2025, 10, 10), "user-a")
        'DailyEntry_2025-10-10_user-a'
    """
    if not author_identity:
        raise ValueError("author_identity не может быть пустым")
    return f"DailyEntry_{normalize_day(day, tz).isoformat()}_{author_identity}"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_draft(draft: EntryDraft, prompt: PromptType) -> None:
    """
    Проверяет заполненность полей текущего вопроса.

    Raises:
        EntryValidationError: Если обязательные поля пусты
    """
    if prompt == PromptType.MORNING:
        if not _clean(draft.morning_need):
            raise EntryValidationError("Напиши, что тебе сегодня нужно")
        return
    missing = []
    if draft.evening_mood is None:
        missing.append("настроение")
    if not _clean(draft.gratitude):
        missing.append("благодарность")
    if not _clean(draft.tomorrow_great):
        missing.append("что сделает завтра отличным")
    if missing:
        raise EntryValidationError(f"Не заполнено: {', '.join(missing)}")


def merge_entry(existing: Optional[DailyEntry], draft: EntryDraft, prompt: PromptType) -> Dict[str, object]:
    """
    Объединяет черновик текущего вопроса с сохраненной записью.

    Поля другого вопроса переносятся из сохраненной записи без изменений.

    Returns:
        Словарь значений четырех полей записи
    """
    own_fields = MORNING_FIELDS if prompt == PromptType.MORNING else EVENING_FIELDS
    merged = {}
    for field in MORNING_FIELDS + EVENING_FIELDS:
        if field in own_fields:
            value = getattr(draft, field)
            merged[field] = _clean(value) if isinstance(value, str) else value
        else:
            merged[field] = getattr(existing, field) if existing else None
    return merged


class EntrySyncEngine:
    """Чтение и запись DailyEntry по обеим зонам хранилища."""

    def __init__(
        self,
        store: RecordStore,
        identity_provider: IdentityProvider,
        state: CheckinState,
        settings: Optional[CheckinSettings] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.store = store
        self.identity_provider = identity_provider
        self.state = state
        self.settings = settings or get_settings()
        self._today = today

    def today(self) -> date:
        if self._today is not None:
            return self._today()
        return datetime.now(self.settings.timezone).date()

    def entry_id(self, day: DayLike, author_identity: str) -> str:
        return deterministic_id(day, author_identity, self.settings.timezone)

    async def _require_identity(self) -> str:
        identity = await self.identity_provider.current_identity()
        if not identity:
            raise NotInitializedError("Личность пользователя еще не известна")
        return identity

    # ==================== Чтение ====================

    async def fetch_entry(self, day: DayLike, author_identity: str) -> Optional[DailyEntry]:
        """
        Получает запись автора за день по детерминированному id из shared или owner зоны.

        Returns:
            DailyEntry или None, если записи еще нет
        """
        record_id = self.entry_id(day, author_identity)
        for realm in READ_REALMS:
            try:
                return await self.store.fetch(RecordKind.DAILY_ENTRY, record_id, realm)
            except (NotFoundError, PermissionDeniedError):
                continue
        return None

    async def fetch_today_entry(self, author_identity: Optional[str] = None) -> Optional[DailyEntry]:
        author = author_identity or await self._require_identity()
        return await self.fetch_entry(self.today(), author)

    async def _query_entries(self, where: Dict[str, object]) -> List[DailyEntry]:
        entries: Dict[str, DailyEntry] = {}
        failures = []
        for realm in READ_REALMS:
            try:
                found = await self.store.query(RecordKind.DAILY_ENTRY, where, realm)
            except BackendError as e:
                logger.warning(f"Ошибка чтения записей из зоны {realm.value}: {e}")
                failures.append(e)
                continue
            for entry in found:
                entries.setdefault(entry.id, entry)
        if len(failures) == len(READ_REALMS):
            raise failures[-1]
        return list(entries.values())

    @staticmethod
    def _partition(day: date, entries: List[DailyEntry], identity: str) -> DayEntries:
        mine = next((e for e in entries if e.author_identity == identity), None)
        partner = next((e for e in entries if e.author_identity != identity), None)
        return DayEntries(date=day, mine=mine, partner=partner)

    async def fetch_entries_for_day(self, day: DayLike) -> DayEntries:
        """
        Получает записи за день из обеих зон и делит их на свою и партнера.

        Returns:
            DayEntries (любая из сторон может отсутствовать)
        """
        identity = await self._require_identity()
        normalized = normalize_day(day, self.settings.timezone)
        entries = await self._query_entries({"date": normalized})
        return self._partition(normalized, entries, identity)

    async def fetch_history(self, start: DayLike, end: DayLike) -> List[DayEntries]:
        """
        Календарная история: дни в диапазоне [start, end], где есть хотя бы одна запись.

        Returns:
            Список DayEntries по возрастанию даты
        """
        identity = await self._require_identity()
        first = normalize_day(start, self.settings.timezone)
        last = normalize_day(end, self.settings.timezone)
        if first > last:
            raise ValueError("Начало периода позже конца")
        entries = await self._query_entries({"date__gte": first, "date__lte": last})
        by_day: Dict[date, List[DailyEntry]] = {}
        for entry in entries:
            by_day.setdefault(entry.date, []).append(entry)
        return [self._partition(day, by_day[day], identity) for day in sorted(by_day)]

    async def load_today_entry(self) -> Optional[DailyEntry]:
        """Загружает свою запись за сегодня в поля состояния."""
        self.state.update(is_loading=True)
        try:
            entry = await self.fetch_today_entry()
            self.state.apply_entry(entry)
            return entry
        finally:
            self.state.update(is_loading=False)

    # ==================== Запись ====================

    async def _write(self, record_id: str, fields: Dict[str, object], existing: Optional[DailyEntry], realm: Realm) -> DailyEntry:
        if existing is None:
            await self.store.create(RecordKind.DAILY_ENTRY, dict(fields, id=record_id), realm)
            return await self.store.fetch(RecordKind.DAILY_ENTRY, record_id, realm)
        return await self.store.update(RecordKind.DAILY_ENTRY, record_id, fields, existing.version, realm)

    async def _upsert(
        self, record_id: str, base: Dict[str, object], draft: EntryDraft, prompt: PromptType,
        existing: Optional[DailyEntry],
    ) -> DailyEntry:
        """Пишет запись: shared зона, при отказе - owner зона."""
        fields = dict(base, **merge_entry(existing, draft, prompt))
        last_error: Optional[Exception] = None
        for realm in WRITE_REALMS:
            try:
                return await self._write(record_id, fields, existing, realm)
            except (PermissionDeniedError, NotFoundError) as e:
                logger.debug(f"Зона {realm.value} недоступна для записи {record_id}: {e}")
                last_error = e
        raise last_error

    async def save_entry(self, draft: EntryDraft, prompt: PromptType, day: Optional[DayLike] = None) -> DailyEntry:
        """
        Сохраняет ответ на вопрос дня с объединением полей другого вопроса.

        Args:
            draft: Введенные поля
            prompt: Утренний или вечерний вопрос
            day: День записи (по умолчанию сегодня)

        Returns:
            Сохраненная DailyEntry

        Raises:
            EntryValidationError: Поля вопроса не заполнены (до любого обращения к хранилищу)
            NotInitializedError: Неизвестна личность или пара
        """
        validate_draft(draft, prompt)
        identity = await self._require_identity()
        couple_id = self.state.couple_id
        if not couple_id:
            raise NotInitializedError()

        normalized = normalize_day(day, self.settings.timezone) if day is not None else self.today()
        record_id = self.entry_id(normalized, identity)
        base = {"date": normalized, "author_identity": identity, "couple_id": couple_id}

        self.state.update(is_saving=True)
        try:
            existing = await self.fetch_entry(normalized, identity)
            try:
                saved = await self._upsert(record_id, base, draft, prompt, existing)
            except ConflictError:
                logger.warning(f"Конфликт при сохранении {record_id}, перечитываем и повторяем")
                existing = await self.fetch_entry(normalized, identity)
                saved = await self._upsert(record_id, base, draft, prompt, existing)
        finally:
            self.state.update(is_saving=False)

        logger.info(f"Сохранена запись {record_id} ({prompt.value})")
        if normalized == self.today():
            self.state.apply_entry(saved)
        return saved


def days_back(today: date, days: int) -> date:
    """Начало периода истории длиной days дней, включая today."""
    return today - timedelta(days=max(days, 1) - 1)
