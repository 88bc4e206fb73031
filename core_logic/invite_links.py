"""Построение и разбор ссылок-приглашений.

Поддерживаемые формы (все сводятся к одному токену):
- ссылка share: https://checkin.app/share/<token>
- обертка deep link: rc://accept?share=<ссылка share>
- короткий код: rc://invite/<token>
- claim: rc://claim?token=<token>
- просто код: <token>
"""

import re
from typing import Optional
from urllib.parse import parse_qs, quote, urlencode, urlparse

from .errors import InvalidInviteLinkError
from .schemas import PromptType

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{6,128}$")


def build_share_url(token: str, base_url: str) -> str:
    """Ссылка share для системного меню "Поделиться"."""
    return f"{base_url.rstrip('/')}/{quote(token, safe='')}"


def build_accept_deep_link(share_url: str, scheme: str = "rc") -> str:
    """Обертка deep link приложения вокруг ссылки share."""
    return f"{scheme}://accept?{urlencode({'share': share_url})}"


def build_invite_code_link(token: str, scheme: str = "rc") -> str:
    """Короткая ссылка с кодом приглашения."""
    return f"{scheme}://invite/{quote(token, safe='')}"


def _check_token(token: Optional[str], raw: str) -> str:
    if not token or not TOKEN_PATTERN.match(token):
        raise InvalidInviteLinkError(f"Не получилось распознать ссылку-приглашение: {raw}")
    return token


def _first_param(query: str, name: str) -> Optional[str]:
    values = parse_qs(query).get(name)
    return values[0] if values else None


def parse_invite_token(raw: str, scheme: str = "rc") -> str:
    """
    Извлекает токен приглашения из любой поддерживаемой формы ссылки.

    Args:
        raw: Ссылка или код, присланные партнером
        scheme: Схема deep link приложения

    Returns:
        Токен приглашения

    Raises:
        InvalidInviteLinkError: Если ссылку не удалось разобрать
    """
    text = (raw or "").strip()
    if not text:
        raise InvalidInviteLinkError("Ссылка-приглашение пустая")

    parsed = urlparse(text)
    if not parsed.scheme:
        return _check_token(text, raw)

    if parsed.scheme == scheme:
        if parsed.netloc == "accept":
            share = _first_param(parsed.query, "share")
            if not share or urlparse(share).scheme == scheme:
                raise InvalidInviteLinkError(f"В ссылке нет приглашения: {raw}")
            return parse_invite_token(share, scheme)
        if parsed.netloc == "claim":
            return _check_token(_first_param(parsed.query, "token"), raw)
        if parsed.netloc == "invite":
            return _check_token(parsed.path.strip("/"), raw)
        raise InvalidInviteLinkError(f"Это не ссылка-приглашение: {raw}")

    if parsed.scheme in ("http", "https"):
        token = _first_param(parsed.query, "token")
        if token is None:
            segments = [segment for segment in parsed.path.split("/") if segment]
            token = segments[-1] if segments else None
        return _check_token(token, raw)

    raise InvalidInviteLinkError(f"Неподдерживаемая схема ссылки: {parsed.scheme}")


def parse_entry_deep_link(raw: str, scheme: str = "rc") -> Optional[PromptType]:
    """
    Разбирает deep link напоминания: rc://entry/morning или rc://entry/evening.

    Returns:
        PromptType или None, если это не ссылка на запись
    """
    parsed = urlparse((raw or "").strip())
    if parsed.scheme != scheme or parsed.netloc != "entry":
        return None
    path = parsed.path.strip("/")
    try:
        return PromptType(path)
    except ValueError:
        return None


def build_entry_deep_link(prompt: PromptType, scheme: str = "rc") -> str:
    return f"{scheme}://entry/{prompt.value}"
