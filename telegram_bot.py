"""Telegram бот для ежедневных чек-инов пары."""

import os
import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple
from dotenv import load_dotenv
from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    filters,
    ContextTypes,
)
from core_logic.checkin_service import CheckinService
from core_logic.config import CheckinSettings, get_settings
from core_logic.entry_sync import days_back
from core_logic.identity import IdentityProvider, StaticIdentityProvider
from core_logic.invite_links import parse_entry_deep_link
from core_logic.notification_service import NotificationService
from core_logic.record_store import RecordStore
from core_logic.schemas import DailyEntry, DayEntries, EntryDraft, Mood, PromptType

load_dotenv()

# Логирование уже настроено в main.py, просто получаем logger
logger = logging.getLogger(__name__)

StoreFactory = Callable[[IdentityProvider], RecordStore]

MOOD_ALIASES: Dict[str, Mood] = {
    "great": Mood.GREAT,
    "отлично": Mood.GREAT,
    "okay": Mood.OKAY,
    "ok": Mood.OKAY,
    "нормально": Mood.OKAY,
    "difficult": Mood.DIFFICULT,
    "тяжело": Mood.DIFFICULT,
}

MAX_HISTORY_DAYS = 31

WELCOME_MESSAGE = """Привет! Я помогаю паре каждый день делиться коротким чек-ином.

Утром: /morning что мне сегодня нужно
Вечером: /evening настроение; за что благодарен; что сделает завтра отличным

Чтобы связаться с партнером:
• /invite - получить ссылку-приглашение
• /accept <ссылка или код> - принять приглашение партнера

Посмотреть ответы: /today, /day ГГГГ-ММ-ДД, /history"""


# ==================== Сессии пользователей ====================

async def get_service(context: ContextTypes.DEFAULT_TYPE, telegram_user_id: int) -> CheckinService:
    """
    Возвращает CheckinService пользователя, создавая его при первом обращении.

    Identity пользователя - его Telegram ID.
    """
    services: Dict[int, CheckinService] = context.bot_data.setdefault("services", {})
    service = services.get(telegram_user_id)
    if service is not None:
        return service

    make_store: StoreFactory = context.bot_data["store_factory"]
    identity = StaticIdentityProvider(str(telegram_user_id))
    service = CheckinService(
        make_store(identity),
        identity,
        notifications=context.bot_data.get("notifications"),
        settings=context.bot_data.get("settings"),
    )
    services[telegram_user_id] = service
    await service.start()
    logger.info(f"Создана сессия чек-инов для пользователя {telegram_user_id}")
    return service


def _error_text(service: CheckinService, fallback: str = "Что-то пошло не так. Попробуй еще раз.") -> str:
    return service.state.error or fallback


# ==================== Форматирование ====================

def parse_mood(raw: str) -> Optional[Mood]:
    """Распознает настроение по английскому значению или русскому названию."""
    return MOOD_ALIASES.get(raw.strip().lower())


def parse_evening_args(text: str) -> Tuple[Optional[Mood], str, str]:
    """
    Разбирает аргументы /evening: "настроение; благодарность; завтра".

    Returns:
        (настроение или None, благодарность, что сделает завтра отличным)
    """
    parts = [part.strip() for part in text.split(";")]
    parts += [""] * (3 - len(parts))
    mood = parse_mood(parts[0]) if parts[0] else None
    return mood, parts[1], "; ".join(part for part in parts[2:] if part)


def format_entry(entry: Optional[DailyEntry], title: str) -> str:
    """
    Форматирует запись для сообщения.

    Args:
        entry: Запись или None
        title: Заголовок блока ("Ты", "Партнер")

    Returns:
        Многострочный текст
    """
    if entry is None:
        return f"{title}: пока нет ответа"
    lines = [f"{title}:"]
    if entry.morning_need:
        lines.append(f"  Сегодня мне нужно: {entry.morning_need}")
    if entry.evening_mood:
        lines.append(f"  Настроение: {entry.evening_mood.display_name}")
    if entry.gratitude:
        lines.append(f"  Благодарность: {entry.gratitude}")
    if entry.tomorrow_great:
        lines.append(f"  Завтра будет отличным, если: {entry.tomorrow_great}")
    if len(lines) == 1:
        lines.append("  пока нет ответа")
    return "\n".join(lines)


def format_day(day: DayEntries) -> str:
    return "\n".join([
        day.date.strftime("%d.%m.%Y"),
        format_entry(day.mine, "Ты"),
        format_entry(day.partner, "Партнер"),
    ])


# ==================== Команды ====================

async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик команды /start."""
    if not update.message or not update.effective_user:
        return

    service = await get_service(context, update.effective_user.id)
    notifications: Optional[NotificationService] = context.bot_data.get("notifications")
    if notifications is not None:
        notifications.schedule_daily_reminders(str(update.effective_user.id))

    await update.message.reply_text(WELCOME_MESSAGE)
    if service.state.is_paired:
        await update.message.reply_text("Вы уже в паре. Ответы партнера: /today")


async def invite_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик /invite: создает пару (если нужно) и приглашение."""
    if not update.message or not update.effective_user:
        return
    service = await get_service(context, update.effective_user.id)
    if service.state.is_paired:
        await update.message.reply_text("Вы уже в паре, новое приглашение не нужно.")
        return

    url = await service.create_invite_link()
    if url is None:
        await update.message.reply_text(_error_text(service))
        return
    await update.message.reply_text(
        "Отправь партнеру эту ссылку. Ее можно открыть или переслать мне командой /accept:\n"
        f"{url}\n\nЯ напишу, когда партнер присоединится."
    )


async def accept_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик /accept <ссылка или код>."""
    if not update.message or not update.effective_user:
        return
    if not context.args:
        await update.message.reply_text("Пришли ссылку или код приглашения: /accept <ссылка>")
        return
    await _accept(update, context, " ".join(context.args))


async def _accept(update: Update, context: ContextTypes.DEFAULT_TYPE, link: str) -> None:
    service = await get_service(context, update.effective_user.id)
    processing_message = await update.message.reply_text("Принимаю приглашение...")
    paired = await service.accept_invite_link(link)
    if paired:
        await processing_message.edit_text("Готово! Теперь вы видите ответы друг друга: /today")
    elif service.state.error:
        await processing_message.edit_text(service.state.error)
    else:
        await processing_message.edit_text("Приглашение принято, связь появится через несколько секунд: /status")


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик /status: состояние пары."""
    if not update.message or not update.effective_user:
        return
    service = await get_service(context, update.effective_user.id)
    service.state.update(error=None)
    status = await service.on_foreground()
    if status.is_paired:
        text = "Пара собрана. Ответы партнера: /today"
    elif status.couple_id:
        text = "Ждем, когда партнер примет приглашение."
        if service.watcher.is_running:
            text += " Я проверяю каждые несколько секунд."
    else:
        text = "Пары пока нет. Создай приглашение: /invite"
    if service.state.error:
        text = service.state.error
    await update.message.reply_text(text)


async def morning_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик /morning <что мне сегодня нужно>."""
    if not update.message or not update.effective_user:
        return
    need = " ".join(context.args or []).strip()
    if not need:
        await update.message.reply_text("Напиши, что тебе сегодня нужно: /morning немного тишины вечером")
        return
    service = await get_service(context, update.effective_user.id)
    entry = await service.save_entry(EntryDraft(morning_need=need), PromptType.MORNING)
    if entry is None:
        await update.message.reply_text(_error_text(service))
        return
    await update.message.reply_text("Сохранил утренний ответ.")


async def evening_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик /evening <настроение>; <благодарность>; <завтра>."""
    if not update.message or not update.effective_user:
        return
    mood, gratitude, tomorrow = parse_evening_args(" ".join(context.args or []))
    if mood is None:
        await update.message.reply_text(
            "Формат: /evening отлично; за что благодарен; что сделает завтра отличным\n"
            "Настроение: отлично, нормально или тяжело."
        )
        return
    service = await get_service(context, update.effective_user.id)
    draft = EntryDraft(evening_mood=mood, gratitude=gratitude, tomorrow_great=tomorrow)
    entry = await service.save_entry(draft, PromptType.EVENING)
    if entry is None:
        await update.message.reply_text(_error_text(service))
        return
    await update.message.reply_text("Сохранил вечерний ответ.")


async def today_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик /today: свои ответы и ответы партнера за сегодня."""
    if not update.message or not update.effective_user:
        return
    service = await get_service(context, update.effective_user.id)
    day = await service.refresh()
    if day is None:
        await update.message.reply_text(_error_text(service))
        return
    await update.message.reply_text(format_day(day))


async def day_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик /day ГГГГ-ММ-ДД."""
    if not update.message or not update.effective_user:
        return
    try:
        day = datetime.strptime((context.args or [""])[0], "%Y-%m-%d").date()
    except ValueError:
        await update.message.reply_text("Укажи дату в формате ГГГГ-ММ-ДД, например /day 2024-05-01")
        return
    service = await get_service(context, update.effective_user.id)
    entries = await service.load_day(day)
    if entries is None:
        await update.message.reply_text(_error_text(service))
        return
    await update.message.reply_text(format_day(entries))


async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Обработчик /history [дней]: дни, в которые кто-то из пары отвечал."""
    if not update.message or not update.effective_user:
        return
    try:
        days = int((context.args or ["7"])[0])
    except ValueError:
        days = 7
    days = min(max(days, 1), MAX_HISTORY_DAYS)

    service = await get_service(context, update.effective_user.id)
    today: date = service.entries.today()
    history: List[DayEntries] = await service.load_history(days_back(today, days), today)
    if service.state.error:
        await update.message.reply_text(service.state.error)
        return
    if not history:
        await update.message.reply_text(f"За последние {days} дн. записей нет.")
        return
    await update.message.reply_text("\n\n".join(format_day(day) for day in history))


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Обработчик текстовых сообщений.

    Ссылка-приглашение принимается, ссылка напоминания открывает нужный вопрос.
    """
    if not update.message or not update.message.chat or not update.effective_user:
        return
    if update.message.chat.type != "private":
        return
    if not update.message.text:
        await update.message.reply_text("Извини, я понимаю только текстовые сообщения.")
        return

    text = update.message.text.strip()
    settings: CheckinSettings = context.bot_data.get("settings") or get_settings()
    logger.info(f"Сообщение от {update.effective_user.id}: {text[:100]}")

    prompt = parse_entry_deep_link(text, settings.deep_link_scheme)
    if prompt == PromptType.MORNING:
        await update.message.reply_text("Что тебе сегодня нужно? Ответь: /morning <текст>")
        return
    if prompt == PromptType.EVENING:
        await update.message.reply_text("Как прошел день? Ответь: /evening настроение; благодарность; завтра")
        return
    if "://" in text:
        await _accept(update, context, text)
        return
    await update.message.reply_text("Не понял сообщение. Список команд: /start")


async def error_handler(
    update: Optional[Update], context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Обработчик ошибок."""
    logger.error(f"Ошибка: {context.error}", exc_info=True)


# ==================== Напоминания ====================

async def send_reminder(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Задача job_queue: отправляет ежедневное напоминание."""
    job = context.job
    data = job.data or {}
    command = "/morning" if data.get("prompt") == PromptType.MORNING.value else "/evening"
    await context.bot.send_message(chat_id=job.chat_id, text=f"{data.get('text')}\nОтветить: {command}")


def reminder_job_name(identity: str, prompt: PromptType) -> str:
    return f"reminder_{identity}_{prompt.value}"


def create_reminder_scheduler(application: Application, settings: CheckinSettings):
    """
    Создает функции планирования и отмены напоминаний поверх job_queue.

    Returns:
        (scheduler, canceller) для NotificationService.set_scheduler
    """
    def scheduler(identity: str, prompt: PromptType, at: str, text: str, deep_link: str) -> bool:
        if application.job_queue is None:
            logger.warning("JobQueue недоступна (нужен python-telegram-bot[job-queue])")
            return False
        application.job_queue.run_daily(
            send_reminder,
            time=settings.reminder_time(at),
            name=reminder_job_name(identity, prompt),
            chat_id=int(identity),
            data={"prompt": prompt.value, "text": text, "deep_link": deep_link},
        )
        return True

    def canceller(identity: str) -> int:
        if application.job_queue is None:
            return 0
        cancelled = 0
        for prompt in PromptType:
            for job in application.job_queue.get_jobs_by_name(reminder_job_name(identity, prompt)):
                job.schedule_removal()
                cancelled += 1
        return cancelled

    return scheduler, canceller


def run_bot(store_factory: StoreFactory, settings: Optional[CheckinSettings] = None) -> None:
    """
    Запускает Telegram бота.

    Args:
        store_factory: Создает RecordStore для identity пользователя
        settings: Настройки чек-инов (по умолчанию из окружения)
    """
    # Получаем токен бота из переменных окружения
    bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
    if not bot_token:
        raise ValueError("TELEGRAM_BOT_TOKEN must be set in .env file")

    # Состояние в файле имеет смысл только для однопользовательского клиента
    settings = (settings or get_settings()).model_copy(update={"state_file": None})

    application = Application.builder().token(bot_token).build()

    notifications = NotificationService(application.bot, settings)
    notifications.set_scheduler(*create_reminder_scheduler(application, settings))

    application.bot_data["store_factory"] = store_factory
    application.bot_data["settings"] = settings
    application.bot_data["notifications"] = notifications
    application.bot_data["services"] = {}

    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("invite", invite_command))
    application.add_handler(CommandHandler("accept", accept_command))
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("morning", morning_command))
    application.add_handler(CommandHandler("evening", evening_command))
    application.add_handler(CommandHandler("today", today_command))
    application.add_handler(CommandHandler("day", day_command))
    application.add_handler(CommandHandler("history", history_command))
    application.add_handler(
        MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message)
    )
    application.add_error_handler(error_handler)

    # run_polling() сам управляет event loop, поэтому вызываем напрямую
    logger.info("Бот запущен. Ожидание сообщений...")
    print("✅ Бот запущен и готов к работе!")
    try:
        application.run_polling(
            allowed_updates=Update.ALL_TYPES,
            drop_pending_updates=True,  # Игнорируем старые обновления при запуске
        )
    except KeyboardInterrupt:
        logger.info("Получен сигнал остановки")
        print("\n🛑 Остановка бота...")
    except Exception as e:
        logger.error(f"Ошибка при работе бота: {e}", exc_info=True)
        raise
