"""Точки входа для UI: пара, приглашения и записи одной сессии пользователя."""

import asyncio
import logging
from datetime import date
from typing import List, Optional

from .config import CheckinSettings, get_settings
from .entry_sync import DayLike, EntrySyncEngine
from .errors import CheckinError, user_message
from .identity import IdentityProvider
from .notification_service import NotificationService
from .pairing import PairingEngine
from .pairing_watcher import PairingWatcher
from .record_store import RecordStore
from .schemas import DailyEntry, DayEntries, EntryDraft, PairingState, PromptType
from .state import CheckinState

logger = logging.getLogger(__name__)


class CheckinService:
    """
    Связывает движки пары и записей, наблюдателя и уведомления.

    Методы не пробрасывают CheckinError в UI: ошибка превращается в
    понятное сообщение в state.error, операцию можно повторить.
    """

    def __init__(
        self,
        store: RecordStore,
        identity_provider: IdentityProvider,
        state: Optional[CheckinState] = None,
        notifications: Optional[NotificationService] = None,
        settings: Optional[CheckinSettings] = None,
        today=None,
    ):
        self.settings = settings or get_settings()
        self.state = state or CheckinState()
        self.identity_provider = identity_provider
        self.notifications = notifications
        self.pairing = PairingEngine(store, identity_provider, self.state, self.settings)
        self.entries = EntrySyncEngine(store, identity_provider, self.state, self.settings, today=today)
        self.watcher = PairingWatcher(
            self.pairing.check_pairing_status,
            interval=self.settings.poll_interval,
            max_attempts=self.settings.poll_max_attempts,
            on_paired=self._on_paired,
        )
        self._refresh_task: Optional[asyncio.Task] = None
        self._unsubscribe_identity = identity_provider.subscribe(self._on_identity_event)

    def _fail(self, error: Exception, prefix: str = "") -> None:
        if isinstance(error, CheckinError):
            logger.warning(f"{prefix or 'Ошибка операции'}: {error!r}")
        else:
            logger.error(f"Неожиданная ошибка: {error}", exc_info=True)
        self.state.update(error=user_message(error, prefix))

    def _persist(self) -> None:
        path = self.settings.state_file
        if not path:
            return
        try:
            self.state.save(path)
        except OSError as e:
            logger.warning(f"Не удалось сохранить состояние: {e}")

    # ==================== Пара ====================

    async def start(self) -> PairingState:
        """Восстанавливает запомненную пару и проверяет статус (запуск приложения)."""
        identity = await self.identity_provider.current_identity()
        self.state.update(identity=identity)
        if self.settings.state_file:
            self.state.restore(self.settings.state_file)
        return await self.check_pairing_status()

    async def create_invite_link(self) -> Optional[str]:
        """
        Создает (или переиспользует) пару и приглашение, запускает наблюдателя.

        Returns:
            Ссылка для партнера или None при ошибке
        """
        self.state.update(is_creating_link=True, error=None)
        try:
            couple = await self.pairing.ensure_couple()
            link = await self.pairing.create_invite_link(couple)
        except Exception as e:
            self._fail(e, "Не удалось создать приглашение")
            return None
        finally:
            self.state.update(is_creating_link=False)
        self._persist()
        self.watcher.start()
        return link.url

    async def accept_invite_link(self, url: str) -> bool:
        """
        Принимает приглашение партнера.

        Returns:
            True, если пара собрана
        """
        self.state.update(is_accepting_link=True, error=None)
        try:
            status = await self.pairing.accept_invite_link(url)
        except Exception as e:
            self._fail(e, "Не удалось принять приглашение")
            return False
        finally:
            self.state.update(is_accepting_link=False)
        self._persist()
        if status.is_paired and self.notifications is not None:
            await self.notifications.notify_paired(self.state.identity, status.partner_identity)
        return status.is_paired

    async def complete_pairing(self) -> bool:
        try:
            return await self.pairing.complete_pairing()
        except Exception as e:
            self._fail(e)
            return False

    async def _on_paired(self, status: PairingState) -> None:
        """Вызывается наблюдателем, когда партнер принял приглашение."""
        await self.pairing.complete_pairing()
        self._persist()
        if self.notifications is not None:
            await self.notifications.notify_paired(self.state.identity, status.partner_identity)

    async def check_pairing_status(self) -> PairingState:
        try:
            return await self.pairing.check_pairing_status()
        except Exception as e:
            self._fail(e, "Не удалось проверить статус пары")
            return self.state.pairing

    async def on_foreground(self) -> PairingState:
        """Приложение стало активным: обновляем статус пары независимо от наблюдателя."""
        return await self.check_pairing_status()

    # ==================== Записи ====================

    async def save_entry(self, draft: EntryDraft, prompt: PromptType) -> Optional[DailyEntry]:
        """
        Сохраняет ответ на вопрос дня.

        Returns:
            Сохраненная запись или None (причина в state.error)
        """
        self.state.update(error=None)
        try:
            entry = await self.entries.save_entry(draft, prompt)
        except Exception as e:
            self._fail(e, "Не удалось сохранить")
            return None
        if self.state.is_paired and self.notifications is not None:
            await self.notifications.notify_partner_checked_in(entry, self.state.partner_identity, prompt)
        return entry

    async def load_today_entry(self) -> Optional[DailyEntry]:
        try:
            return await self.entries.load_today_entry()
        except Exception as e:
            self._fail(e, "Не удалось загрузить запись")
            return None

    async def load_day(self, day: DayLike) -> Optional[DayEntries]:
        """Записи за день (свою и партнера) для экрана истории."""
        self.state.update(is_loading=True, error=None)
        try:
            return await self.entries.fetch_entries_for_day(day)
        except Exception as e:
            self._fail(e, "Не удалось загрузить записи")
            return None
        finally:
            self.state.update(is_loading=False)

    async def load_history(self, start: date, end: date) -> List[DayEntries]:
        self.state.update(is_loading=True, error=None)
        try:
            return await self.entries.fetch_history(start, end)
        except Exception as e:
            self._fail(e, "Не удалось загрузить историю")
            return []
        finally:
            self.state.update(is_loading=False)

    async def refresh(self) -> Optional[DayEntries]:
        """Обновляет статус пары (с починкой частичного принятия) и записи за сегодня."""
        self.state.update(error=None)
        try:
            await self.pairing.refresh_pairing()
        except Exception as e:
            self._fail(e, "Не удалось обновить статус пары")
            return None
        today = await self.load_day(self.entries.today())
        if today is not None:
            self.state.update(my_today_entry=today.mine, partner_today_entry=today.partner)
        return today

    # ==================== Сессия ====================

    def _on_identity_event(self, identity: Optional[str]) -> None:
        self.on_identity_changed(identity)

    def on_identity_changed(self, identity: Optional[str]) -> None:
        """
        Реакция на смену сессии: состояние сбрасывается, наблюдатель останавливается.

        После входа (identity не None) в фоне запускается refresh; задачу
        дожидается shutdown().
        """
        self.watcher.cancel()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self.state.reset()
        self.state.update(identity=identity)
        logger.info(f"Состояние сброшено после смены сессии (identity={identity})")
        if identity is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Нет запущенного event loop, обновление после входа пропущено")
            return
        self._refresh_task = loop.create_task(self.refresh())

    async def shutdown(self) -> None:
        """Останавливает фоновые задачи (уход приложения в фон, закрытие экрана)."""
        self.watcher.cancel()
        if self.watcher.is_running:
            await self.watcher.wait()
        if self._refresh_task is not None and not self._refresh_task.done():
            await asyncio.wait([self._refresh_task])
        self._unsubscribe_identity()
        self._persist()
