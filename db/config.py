"""Database configuration and connection management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from db.models import Base


def get_database_url(db_file: Optional[str] = None) -> str:
    """
    Получает URL базы данных из переменной окружения или формирует из db_file.

    Args:
        db_file: Путь к файлу SQLite БД

    Returns:
        URL базы данных в формате SQLAlchemy
    """
    if db_file:
        # Если путь относительный, добавляем ./ для явного указания
        if not os.path.isabs(db_file):
            db_file = os.path.join(".", db_file)
        return f"sqlite:///{db_file}"

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        default_db_file = os.getenv("DB_FILE", "data/relationship_checkin.db")
        if not os.path.isabs(default_db_file):
            default_db_file = os.path.join(".", default_db_file)
        return f"sqlite:///{default_db_file}"

    return database_url


def create_engine_instance(database_url: Optional[str] = None, db_file: Optional[str] = None) -> Engine:
    """
    Создает SQLAlchemy engine с правильными параметрами для разных типов БД.

    Args:
        database_url: URL базы данных (приоритетнее db_file и окружения)
        db_file: Путь к файлу SQLite БД

    Returns:
        SQLAlchemy Engine
    """
    database_url = database_url or get_database_url(db_file)

    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # In-memory SQLite: одно соединение на весь процесс, иначе у каждого свое пустое хранилище
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    if database_url.startswith("sqlite"):
        # Для SQLite нужны специальные параметры
        path = database_url.replace("sqlite:///", "", 1)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    return create_engine(database_url, echo=False)


def init_schema(engine: Engine) -> None:
    """Создает таблицы, если их нет."""
    Base.metadata.create_all(engine)


def get_session_factory(
    database_url: Optional[str] = None,
    db_file: Optional[str] = None,
    engine: Optional[Engine] = None,
) -> sessionmaker[Session]:
    """
    Возвращает sessionmaker для создания сессий БД (таблицы создаются при необходимости).

    Args:
        database_url: URL базы данных
        db_file: Путь к файлу SQLite БД
        engine: Готовый engine (например, общий для тестов)

    Returns:
        sessionmaker для создания сессий
    """
    engine = engine or create_engine_instance(database_url, db_file)
    init_schema(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
