"""Иерархия ошибок ядра и преобразование их в сообщения для пользователя."""


class CheckinError(Exception):
    """Базовая ошибка ядра чек-инов."""

    user_text = "Что-то пошло не так. Попробуй еще раз."


class PermissionDeniedError(CheckinError):
    """Операция доступна только владельцу записи."""

    user_text = "Недостаточно прав для этой операции."


class NotFoundError(CheckinError):
    """Запись не найдена ни в одной зоне хранилища."""

    user_text = "Запись не найдена."


class ConflictError(CheckinError):
    """Запись была изменена параллельно (не совпала версия)."""

    user_text = "Данные изменились, пока мы их сохраняли. Попробуй еще раз."


class AlreadyClaimedError(CheckinError):
    """Приглашение уже использовано или пара уже собрана."""

    user_text = "Это приглашение уже использовано."


class BackendError(CheckinError):
    """Временная ошибка сети или хранилища."""

    user_text = "Хранилище временно недоступно. Попробуй еще раз чуть позже."


class NotInitializedError(CheckinError):
    """Личность пользователя или пара еще не известны."""

    user_text = "Сначала создай приглашение или прими приглашение партнера."


class EntryValidationError(CheckinError, ValueError):
    """Запись не прошла проверку перед сохранением."""

    user_text = "Заполни все поля перед сохранением."


class InvalidInviteLinkError(CheckinError, ValueError):
    """Ссылку-приглашение не удалось разобрать."""

    user_text = "Не получилось распознать ссылку-приглашение."


def user_message(error: Exception, prefix: str = "") -> str:
    """
    Формирует понятное пользователю сообщение об ошибке.

    Args:
        error: Исключение
        prefix: Необязательное начало сообщения (например, "Не удалось принять приглашение")

    Returns:
        Текст для показа в интерфейсе
    """
    if isinstance(error, CheckinError):
        detail = str(error) or error.user_text
    else:
        detail = CheckinError.user_text
    if prefix:
        return f"{prefix}: {detail}"
    return detail
