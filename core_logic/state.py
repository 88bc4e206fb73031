"""Наблюдаемое состояние сессии пользователя, которое рендерит UI."""

import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel

from .schemas import DailyEntry, Mood, PairingState

logger = logging.getLogger(__name__)

StateListener = Callable[[Dict[str, Any]], None]

_DEFAULTS: Dict[str, Any] = {
    "identity": None,
    "couple_id": None,
    "is_paired": False,
    "partner_identity": None,
    "is_creating_link": False,
    "is_accepting_link": False,
    "share_url": None,
    "error": None,
    "morning_need": "",
    "evening_mood": None,
    "gratitude": "",
    "tomorrow_great": "",
    "is_loading": False,
    "is_saving": False,
    "my_today_entry": None,
    "partner_today_entry": None,
}


class PersistedState(BaseModel):
    """Часть состояния, переживающая перезапуск (запомненная пара)."""
    identity: Optional[str] = None
    couple_id: Optional[str] = None


class CheckinState:
    """
    Держатель изменяемого состояния одной сессии.

    Единственный владелец состояния пары и записей; передается в движки
    по ссылке. Изменения публикуются подписчикам словарем измененных полей.
    """

    identity: Optional[str]
    couple_id: Optional[str]
    is_paired: bool
    partner_identity: Optional[str]
    is_creating_link: bool
    is_accepting_link: bool
    share_url: Optional[str]
    error: Optional[str]
    morning_need: str
    evening_mood: Optional[Mood]
    gratitude: str
    tomorrow_great: str
    is_loading: bool
    is_saving: bool
    my_today_entry: Optional[DailyEntry]
    partner_today_entry: Optional[DailyEntry]

    def __init__(self, **initial: Any):
        self._listeners: List[StateListener] = []
        for name, value in _DEFAULTS.items():
            setattr(self, name, value)
        if initial:
            self.update(**initial)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Подписывает listener на изменения.

        Returns:
            Функция для отписки
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes: Any) -> Dict[str, Any]:
        """
        Применяет изменения и уведомляет подписчиков.

        Returns:
            Словарь реально измененных полей

        Raises:
            AttributeError: Если передано неизвестное поле
        """
        changed = {}
        for name, value in changes.items():
            if name not in _DEFAULTS:
                raise AttributeError(f"Неизвестное поле состояния: {name}")
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed[name] = value
        if changed:
            for listener in list(self._listeners):
                try:
                    listener(changed)
                except Exception as e:
                    logger.error(f"Ошибка в подписчике состояния: {e}", exc_info=True)
        return changed

    def apply_pairing(self, pairing: PairingState) -> None:
        self.update(
            is_paired=pairing.is_paired,
            partner_identity=pairing.partner_identity,
            couple_id=pairing.couple_id,
        )

    def apply_entry(self, entry: Optional[DailyEntry]) -> None:
        """Заполняет поля формы значениями записи (или очищает их)."""
        self.update(
            my_today_entry=entry,
            morning_need=(entry.morning_need or "") if entry else "",
            evening_mood=entry.evening_mood if entry else None,
            gratitude=(entry.gratitude or "") if entry else "",
            tomorrow_great=(entry.tomorrow_great or "") if entry else "",
        )

    @property
    def pairing(self) -> PairingState:
        return PairingState(
            is_paired=self.is_paired,
            partner_identity=self.partner_identity,
            couple_id=self.couple_id,
        )

    def reset(self) -> None:
        """Сбрасывает все, кроме identity (выход из аккаунта, смена сессии)."""
        self.update(**{name: value for name, value in _DEFAULTS.items() if name != "identity"})

    def snapshot(self) -> PersistedState:
        return PersistedState(identity=self.identity, couple_id=self.couple_id)

    def save(self, path: str) -> None:
        """Сохраняет запомненную пару в JSON файл."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.snapshot().model_dump_json())
        logger.debug(f"Состояние сохранено в {path}")

    def restore(self, path: str) -> bool:
        """
        Восстанавливает запомненную пару из JSON файла.

        Запомненный couple_id применяется, только если файл принадлежит той же личности.

        Returns:
            True, если состояние восстановлено
        """
        if not os.path.exists(path):
            return False
        try:
            with open(path, "r", encoding="utf-8") as f:
                persisted = PersistedState.model_validate(json.load(f))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Не удалось прочитать сохраненное состояние {path}: {e}")
            return False
        if self.identity and persisted.identity and persisted.identity != self.identity:
            logger.info("Сохраненное состояние принадлежит другой личности, пропускаем")
            return False
        self.update(identity=self.identity or persisted.identity, couple_id=persisted.couple_id)
        return True
