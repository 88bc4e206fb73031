"""Тесты для core_logic/state.py."""

import pytest

from core_logic.schemas import DailyEntry, Mood, PairingState
from core_logic.state import CheckinState
from conftest import TODAY


class TestUpdate:
    """Тесты для update() и подписки."""

    def test_listener_gets_changed_fields(self):
        """Тест: подписчик получает только реально измененные поля."""
        state = CheckinState(identity="alice")
        received = []
        state.subscribe(received.append)

        changed = state.update(identity="alice", is_loading=True)

        assert changed == {"is_loading": True}
        assert received == [{"is_loading": True}]

    def test_no_change_no_notification(self):
        state = CheckinState()
        received = []
        state.subscribe(received.append)

        assert state.update(is_loading=False) == {}
        assert received == []

    def test_unknown_field(self):
        """Тест: неизвестное поле -> AttributeError."""
        with pytest.raises(AttributeError):
            CheckinState().update(colour="red")

    def test_listener_error_does_not_break_update(self):
        """Тест: ошибка подписчика не мешает остальным."""
        state = CheckinState()
        received = []

        def broken(changes):
            raise RuntimeError("подписчик сломан")

        state.subscribe(broken)
        state.subscribe(received.append)
        state.update(error="Ошибка")

        assert state.error == "Ошибка"
        assert received == [{"error": "Ошибка"}]

    def test_unsubscribe(self):
        state = CheckinState()
        received = []
        unsubscribe = state.subscribe(received.append)

        unsubscribe()
        state.update(is_saving=True)

        assert received == []


class TestApply:
    """Тесты для apply_pairing(), apply_entry() и reset()."""

    def test_apply_pairing(self):
        state = CheckinState()

        state.apply_pairing(PairingState(is_paired=True, partner_identity="bob", couple_id="Couple_1"))

        assert state.pairing == PairingState(is_paired=True, partner_identity="bob", couple_id="Couple_1")

    def test_apply_entry_fills_form(self):
        """Тест: поля формы заполняются из записи, пустые - пустой строкой."""
        state = CheckinState()
        entry = DailyEntry(
            id="DailyEntry_2026-03-14_alice",
            date=TODAY,
            author_identity="alice",
            evening_mood=Mood.OKAY,
            gratitude="За чай",
        )

        state.apply_entry(entry)

        assert state.my_today_entry == entry
        assert state.morning_need == ""
        assert state.evening_mood == Mood.OKAY
        assert state.gratitude == "За чай"

    def test_reset_keeps_identity(self):
        """Тест: сброс очищает пару и форму, но не личность."""
        state = CheckinState(identity="alice", couple_id="Couple_1", is_paired=True, morning_need="Тишина")

        state.reset()

        assert state.identity == "alice"
        assert state.couple_id is None
        assert not state.is_paired
        assert state.morning_need == ""


class TestPersistence:
    """Тесты для save() и restore()."""

    def test_round_trip(self, tmp_path):
        """Тест: запомненная пара переживает перезапуск."""
        path = str(tmp_path / "state" / "checkin.json")
        CheckinState(identity="alice", couple_id="Couple_1").save(path)

        restored = CheckinState(identity="alice")

        assert restored.restore(path)
        assert restored.couple_id == "Couple_1"

    def test_other_identity_skipped(self, tmp_path):
        """Тест: состояние другой личности не применяется."""
        path = str(tmp_path / "checkin.json")
        CheckinState(identity="alice", couple_id="Couple_1").save(path)

        state = CheckinState(identity="bob")

        assert not state.restore(path)
        assert state.couple_id is None

    def test_missing_file(self, tmp_path):
        assert not CheckinState().restore(str(tmp_path / "missing.json"))

    def test_corrupt_file(self, tmp_path):
        """Тест: поврежденный файл не ломает запуск."""
        path = tmp_path / "checkin.json"
        path.write_text("{не json", encoding="utf-8")

        assert not CheckinState().restore(str(path))
