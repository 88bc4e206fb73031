"""Настройки приложения из переменных окружения."""

import os
from datetime import datetime, time
from typing import Optional
import pytz
from pydantic import BaseModel, Field, field_validator

DEFAULT_TIMEZONE_NAME = "Europe/Moscow"


class CheckinSettings(BaseModel):
    """Настройки ядра чек-инов."""
    timezone_name: str = DEFAULT_TIMEZONE_NAME
    poll_interval: float = Field(default=3.0, gt=0, description="Пауза между проверками пары, сек")
    poll_max_attempts: int = Field(default=60, gt=0, description="Максимум проверок после приглашения")
    share_base_url: str = "https://checkin.app/share"
    deep_link_scheme: str = "rc"
    morning_reminder: str = Field(default="08:00", pattern=r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$')
    evening_reminder: str = Field(default="17:00", pattern=r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$')
    state_file: Optional[str] = None

    @field_validator("timezone_name")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Неизвестный часовой пояс: {value}")
        return value

    @field_validator("share_base_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def timezone(self):
        return pytz.timezone(self.timezone_name)

    def reminder_time(self, value: str) -> time:
        """Преобразует "HH:MM" в time со смещением часового пояса настроек на сегодня."""
        hour, minute = (int(part) for part in value.split(":"))
        today = datetime.now(self.timezone).date()
        return self.timezone.localize(datetime.combine(today, time(hour=hour, minute=minute))).timetz()

    @classmethod
    def from_env(cls) -> "CheckinSettings":
        """
        Собирает настройки из переменных окружения.

        Returns:
            CheckinSettings

        Raises:
            ValueError: Если значения переменных невалидны
        """
        values = {}
        env_map = {
            "CHECKIN_TIMEZONE": "timezone_name",
            "CHECKIN_POLL_INTERVAL": "poll_interval",
            "CHECKIN_POLL_MAX_ATTEMPTS": "poll_max_attempts",
            "CHECKIN_SHARE_BASE_URL": "share_base_url",
            "CHECKIN_DEEP_LINK_SCHEME": "deep_link_scheme",
            "CHECKIN_MORNING_REMINDER": "morning_reminder",
            "CHECKIN_EVENING_REMINDER": "evening_reminder",
            "CHECKIN_STATE_FILE": "state_file",
        }
        for env_name, field_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value
        return cls(**values)


_settings: Optional[CheckinSettings] = None


def get_settings() -> CheckinSettings:
    """Возвращает настройки процесса (читаются из окружения один раз)."""
    global _settings
    if _settings is None:
        _settings = CheckinSettings.from_env()
    return _settings
