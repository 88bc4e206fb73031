"""Тесты для core_logic/pairing_watcher.py."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from core_logic.pairing_watcher import PairingWatcher
from core_logic.schemas import PairingState, WatchStatus

NOT_PAIRED = PairingState(couple_id="Couple_1")
PAIRED = PairingState(is_paired=True, partner_identity="bob", couple_id="Couple_1")


def test_invalid_parameters():
    """Тест: интервал и число попыток должны быть положительными."""
    check = AsyncMock(return_value=NOT_PAIRED)
    with pytest.raises(ValueError):
        PairingWatcher(check, interval=0)
    with pytest.raises(ValueError):
        PairingWatcher(check, interval=1, max_attempts=0)


@pytest.mark.asyncio
async def test_stops_when_paired():
    """Тест: опрос прекращается на первой проверке, где пара собрана."""
    check = AsyncMock(side_effect=[NOT_PAIRED, NOT_PAIRED, PAIRED])
    on_paired = AsyncMock()
    watcher = PairingWatcher(check, interval=0.01, max_attempts=10, on_paired=on_paired)

    result = await watcher.start()

    assert result == WatchStatus.PAIRED
    assert watcher.status == WatchStatus.PAIRED
    assert check.await_count == 3
    assert watcher.attempts == 3
    on_paired.assert_awaited_once_with(PAIRED)


@pytest.mark.asyncio
async def test_times_out_after_max_attempts():
    """Тест: после max_attempts проверок наблюдатель останавливается."""
    check = AsyncMock(return_value=NOT_PAIRED)
    on_paired = AsyncMock()
    watcher = PairingWatcher(check, interval=0.01, max_attempts=4, on_paired=on_paired)

    result = await watcher.start()

    assert result == WatchStatus.TIMED_OUT
    assert check.await_count == 4
    on_paired.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_interrupts_sleep():
    """Тест: отмена прерывает паузу и не ждет следующей проверки."""
    check = AsyncMock(return_value=NOT_PAIRED)
    watcher = PairingWatcher(check, interval=10, max_attempts=5)

    task = watcher.start()
    await asyncio.sleep(0.05)
    watcher.cancel()
    result = await asyncio.wait_for(task, timeout=1)

    assert result == WatchStatus.CANCELLED
    assert check.await_count == 1
    assert not watcher.is_running


@pytest.mark.asyncio
async def test_errors_count_as_attempts():
    """Тест: ошибка проверки не останавливает опрос."""
    check = AsyncMock(side_effect=[RuntimeError("сеть"), PAIRED])
    watcher = PairingWatcher(check, interval=0.01, max_attempts=5)

    result = await watcher.start()

    assert result == WatchStatus.PAIRED
    assert watcher.attempts == 2


@pytest.mark.asyncio
async def test_restart_supersedes_previous_cycle():
    """Тест: новый start отменяет предыдущий цикл, статус принадлежит новому."""
    check = AsyncMock(return_value=NOT_PAIRED)
    watcher = PairingWatcher(check, interval=10, max_attempts=5)

    first = watcher.start()
    await asyncio.sleep(0.05)
    check.return_value = PAIRED
    second = watcher.start()

    assert await asyncio.wait_for(first, timeout=1) == WatchStatus.CANCELLED
    assert await asyncio.wait_for(second, timeout=1) == WatchStatus.PAIRED
    assert watcher.status == WatchStatus.PAIRED


@pytest.mark.asyncio
async def test_on_paired_error_is_logged():
    """Тест: ошибка обработчика не меняет итоговый статус."""
    check = AsyncMock(return_value=PAIRED)
    on_paired = AsyncMock(side_effect=RuntimeError("уведомление"))
    watcher = PairingWatcher(check, interval=0.01, max_attempts=3, on_paired=on_paired)

    assert await watcher.start() == WatchStatus.PAIRED


@pytest.mark.asyncio
async def test_wait_without_start():
    """Тест: wait() без запуска возвращает IDLE."""
    watcher = PairingWatcher(AsyncMock(return_value=NOT_PAIRED), interval=0.01)

    assert await watcher.wait() == WatchStatus.IDLE
