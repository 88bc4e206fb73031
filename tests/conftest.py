"""Общие фикстуры: in-memory БД и два устройства (Алиса и Боб) над ней."""

from datetime import date

import pytest

from core_logic.config import CheckinSettings
from core_logic.entry_sync import EntrySyncEngine
from core_logic.identity import StaticIdentityProvider
from core_logic.pairing import PairingEngine
from core_logic.state import CheckinState
from db.config import create_engine_instance, get_session_factory
from db.sql_store import SqlRecordStore

TODAY = date(2026, 3, 14)


class Device:
    """Одно устройство пользователя: своя личность, свое состояние, общее хранилище."""

    def __init__(self, session_factory, identity: str, settings: CheckinSettings):
        self.identity = StaticIdentityProvider(identity)
        self.store = SqlRecordStore(session_factory, self.identity)
        self.state = CheckinState()
        self.pairing = PairingEngine(self.store, self.identity, self.state, settings)
        self.entries = EntrySyncEngine(self.store, self.identity, self.state, settings, today=lambda: TODAY)


@pytest.fixture
def engine():
    """In-memory SQLite, общая для всех устройств теста."""
    engine = create_engine_instance("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine=engine)


@pytest.fixture
def settings():
    """Настройки с короткой паузой наблюдателя."""
    return CheckinSettings(poll_interval=0.01, poll_max_attempts=5)


@pytest.fixture
def alice(session_factory, settings):
    return Device(session_factory, "alice", settings)


@pytest.fixture
def bob(session_factory, settings):
    return Device(session_factory, "bob", settings)


@pytest.fixture
def carol(session_factory, settings):
    return Device(session_factory, "carol", settings)
