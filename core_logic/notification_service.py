"""Сервис для напоминаний о чек-инах и уведомлений партнеру."""

import logging
from typing import Any, Callable, Dict, Optional

from .config import CheckinSettings, get_settings
from .invite_links import build_entry_deep_link
from .schemas import DailyEntry, PromptType

logger = logging.getLogger(__name__)

# Сигнатура: scheduler(identity, prompt, "HH:MM", text, deep_link) -> bool
ReminderScheduler = Callable[[str, PromptType, str, str, str], bool]
ReminderCanceller = Callable[[str], int]

REMINDER_TEXTS: Dict[PromptType, str] = {
    PromptType.MORNING: "Утренний чек-ин: одна вещь, которая мне сегодня нужна...",
    PromptType.EVENING: "Вечерний чек-ин: как прошел день?",
}


class NotificationService:
    """
    Точка, через которую ядро запускает уведомления.

    Отправку сообщений и планирование выполняет UI слой: он передает bot
    instance и функции планирования напоминаний.
    """

    def __init__(
        self,
        bot: Optional[Any] = None,
        settings: Optional[CheckinSettings] = None,
    ):
        """
        Инициализирует сервис уведомлений.

        Args:
            bot: Экземпляр Telegram бота для отправки сообщений (опционально)
            settings: Настройки (время напоминаний, схема deep link)
        """
        self._bot: Optional[Any] = bot
        self.settings = settings or get_settings()
        self._scheduler: Optional[ReminderScheduler] = None
        self._canceller: Optional[ReminderCanceller] = None

    def set_bot(self, bot: Any) -> None:
        """
        Устанавливает bot instance для отправки уведомлений.

        Args:
            bot: Экземпляр Telegram бота
        """
        self._bot = bot
        logger.info("Bot instance установлен для NotificationService")

    def set_scheduler(self, scheduler: Optional[ReminderScheduler], canceller: Optional[ReminderCanceller] = None) -> None:
        """Устанавливает функции планирования и отмены ежедневных напоминаний."""
        self._scheduler = scheduler
        self._canceller = canceller
        logger.info("Планировщик напоминаний установлен для NotificationService")

    def schedule_daily_reminders(self, identity: str) -> bool:
        """
        Планирует утреннее и вечернее напоминание для пользователя.

        Returns:
            True, если оба напоминания запланированы
        """
        if self._scheduler is None:
            logger.warning("Планировщик не установлен, напоминания не запланированы")
            return False
        self.cancel_reminders(identity)
        times = {
            PromptType.MORNING: self.settings.morning_reminder,
            PromptType.EVENING: self.settings.evening_reminder,
        }
        scheduled = True
        for prompt, at in times.items():
            deep_link = build_entry_deep_link(prompt, self.settings.deep_link_scheme)
            try:
                scheduled = self._scheduler(identity, prompt, at, REMINDER_TEXTS[prompt], deep_link) and scheduled
            except Exception as e:
                logger.error(f"Ошибка при планировании напоминания {prompt.value}: {e}", exc_info=True)
                scheduled = False
        if scheduled:
            logger.info(f"Напоминания запланированы для {identity}")
        return scheduled

    def cancel_reminders(self, identity: str) -> int:
        """Отменяет напоминания пользователя. Возвращает число отмененных."""
        if self._canceller is None:
            return 0
        try:
            return self._canceller(identity)
        except Exception as e:
            logger.error(f"Ошибка при отмене напоминаний: {e}", exc_info=True)
            return 0

    async def _send(self, identity: str, text: str) -> bool:
        if self._bot is None:
            logger.warning("Bot instance не установлен, уведомление не отправлено")
            return False
        try:
            await self._bot.send_message(chat_id=int(identity), text=text)
            return True
        except ValueError:
            logger.warning(f"Identity {identity} не является Telegram chat id, уведомление пропущено")
            return False
        except Exception as e:
            logger.error(f"Ошибка при отправке уведомления {identity}: {e}", exc_info=True)
            return False

    async def notify_partner_checked_in(self, entry: DailyEntry, partner_identity: Optional[str], prompt: PromptType) -> bool:
        """
        Сообщает партнеру, что автор ответил на вопрос дня.

        Returns:
            True если уведомление отправлено успешно, False в противном случае
        """
        if not partner_identity:
            logger.info(f"У автора {entry.author_identity} нет партнера, уведомление не требуется")
            return False
        what = "утренний" if prompt == PromptType.MORNING else "вечерний"
        sent = await self._send(partner_identity, f"Партнер ответил на {what} чек-ин. Посмотри: /today")
        if sent:
            logger.info(f"Уведомление о записи {entry.id} отправлено партнеру {partner_identity}")
        return sent

    async def notify_paired(self, identity: str, partner_identity: str) -> bool:
        """
        Сообщает identity, что пара собрана.

        Каждая сторона уведомляет только себя: партнер - после принятия
        приглашения, владелец - когда наблюдатель увидит пару.
        """
        sent = await self._send(identity, "Пара собрана! Теперь вы видите ответы друг друга.")
        if sent:
            logger.info(f"Уведомление о паре {identity} + {partner_identity} отправлено")
        return sent
