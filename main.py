"""Точка входа: выбор хранилища и запуск Telegram бота чек-инов."""

import os
import logging
from dotenv import load_dotenv

from core_logic.config import get_settings
from core_logic.identity import IdentityProvider
from core_logic.record_store import RecordStore

load_dotenv()

# Настройка логирования
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)


def create_store_factory(backend: str = None):
    """
    Создает фабрику хранилищ для выбранного backend.

    Args:
        backend: "sql" (SQLAlchemy, по умолчанию) или "supabase"; по умолчанию CHECKIN_BACKEND

    Returns:
        Функция identity_provider -> RecordStore

    Raises:
        ValueError: Неизвестный backend
    """
    backend = (backend or os.getenv("CHECKIN_BACKEND", "sql")).lower()

    if backend == "sql":
        from db.config import get_session_factory
        from db.sql_store import SqlRecordStore

        session_factory = get_session_factory()

        def make_sql_store(identity_provider: IdentityProvider) -> RecordStore:
            return SqlRecordStore(session_factory, identity_provider)

        logger.info("Хранилище: SQLAlchemy")
        return make_sql_store

    if backend == "supabase":
        from core_logic.supabase_client import get_supabase_client
        from db.supabase_store import SupabaseRecordStore

        client = get_supabase_client()

        def make_supabase_store(identity_provider: IdentityProvider) -> RecordStore:
            return SupabaseRecordStore(client, identity_provider)

        logger.info("Хранилище: Supabase")
        return make_supabase_store

    raise ValueError(f"Неизвестный CHECKIN_BACKEND: {backend} (ожидается sql или supabase)")


def main() -> None:
    from telegram_bot import run_bot

    settings = get_settings()
    logger.info(f"Часовой пояс чек-инов: {settings.timezone_name}")
    run_bot(create_store_factory(), settings)


if __name__ == "__main__":
    main()
