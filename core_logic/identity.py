"""Поставщик личности (identity) текущего пользователя."""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[str]], None]


class IdentityProvider(ABC):
    """
    Источник стабильного идентификатора текущего аккаунта.

    Подписчики получают новый identity (или None при выходе из аккаунта).
    """

    def __init__(self):
        self._listeners: List[IdentityListener] = []

    @abstractmethod
    async def current_identity(self) -> Optional[str]:
        """Возвращает identity текущей сессии или None, если сессии нет."""

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """
        Подписывает listener на смену сессии.

        Returns:
            Функция для отписки
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, identity: Optional[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(identity)
            except Exception as e:
                logger.error(f"Ошибка в подписчике смены сессии: {e}", exc_info=True)


class StaticIdentityProvider(IdentityProvider):
    """Identity, известный заранее (Telegram ID, тесты)."""

    def __init__(self, identity: Optional[str] = None):
        super().__init__()
        self._identity = identity

    async def current_identity(self) -> Optional[str]:
        return self._identity

    def set_identity(self, identity: Optional[str]) -> None:
        """Меняет identity (вход/выход) и уведомляет подписчиков."""
        if identity == self._identity:
            return
        self._identity = identity
        logger.info(f"Сессия изменена: identity={identity}")
        self._emit(identity)
