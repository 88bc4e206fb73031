"""Ограниченный фоновый опрос статуса пары после выпуска приглашения."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .schemas import PairingState, WatchStatus

logger = logging.getLogger(__name__)

StatusCheck = Callable[[], Awaitable[PairingState]]
PairedCallback = Callable[[PairingState], Awaitable[None]]


class PairingWatcher:
    """
    Опрашивает check_status с фиксированным интервалом, пока пара не собрана.

    IDLE -> POLLING -> PAIRED | TIMED_OUT | CANCELLED. Отмена наблюдается
    на границе итерации; пауза между опросами прерывается сразу.
    """

    def __init__(
        self,
        check_status: StatusCheck,
        interval: float = 3.0,
        max_attempts: int = 60,
        on_paired: Optional[PairedCallback] = None,
    ):
        if interval <= 0:
            raise ValueError("interval должен быть положительным")
        if max_attempts <= 0:
            raise ValueError("max_attempts должен быть положительным")
        self._check_status = check_status
        self.interval = interval
        self.max_attempts = max_attempts
        self._on_paired = on_paired
        self.status = WatchStatus.IDLE
        self.attempts = 0
        self._task: Optional[asyncio.Task] = None
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """
        Запускает новый цикл опроса; предыдущий цикл отменяется.

        Returns:
            asyncio.Task с итоговым WatchStatus
        """
        self.cancel()
        cancel_event = asyncio.Event()
        self._cancel_event = cancel_event
        self.attempts = 0
        self.status = WatchStatus.POLLING
        self._task = asyncio.create_task(self._run(cancel_event))
        return self._task

    def cancel(self) -> None:
        """Просит текущий цикл остановиться на ближайшей границе итерации."""
        if self._cancel_event is not None and self.is_running:
            self._cancel_event.set()

    async def wait(self) -> WatchStatus:
        """Дожидается завершения текущего цикла."""
        if self._task is None:
            return self.status
        return await self._task

    async def _sleep(self, cancel_event: asyncio.Event) -> bool:
        """Пауза между опросами. Возвращает True, если пришла отмена."""
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False

    def _finish(self, cancel_event: asyncio.Event, status: WatchStatus) -> WatchStatus:
        # Отмененный цикл не перетирает статус нового
        if cancel_event is self._cancel_event:
            self.status = status
        return status

    async def _run(self, cancel_event: asyncio.Event) -> WatchStatus:
        attempts = 0
        while attempts < self.max_attempts:
            if cancel_event.is_set():
                logger.info("Наблюдение за парой отменено")
                return self._finish(cancel_event, WatchStatus.CANCELLED)

            attempts += 1
            if cancel_event is self._cancel_event:
                self.attempts = attempts
            try:
                pairing = await self._check_status()
            except Exception as e:
                logger.warning(f"Ошибка проверки статуса пары (попытка {attempts}): {e}")
                pairing = None

            if pairing is not None and pairing.is_paired:
                logger.info(f"Пара собрана после {attempts} проверок")
                status = self._finish(cancel_event, WatchStatus.PAIRED)
                if self._on_paired is not None and not cancel_event.is_set():
                    try:
                        await self._on_paired(pairing)
                    except Exception as e:
                        logger.error(f"Ошибка в обработчике сборки пары: {e}", exc_info=True)
                return status

            if attempts >= self.max_attempts:
                break
            if await self._sleep(cancel_event):
                logger.info("Наблюдение за парой отменено")
                return self._finish(cancel_event, WatchStatus.CANCELLED)

        logger.info(f"Пара не собрана за {attempts} проверок, наблюдение остановлено")
        return self._finish(cancel_event, WatchStatus.TIMED_OUT)
