"""Supabase client configuration and utilities."""

import os
from typing import Optional

from supabase import create_client, Client

_client: Optional[Client] = None


def get_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """
    Создает (один раз на процесс) и возвращает клиент Supabase.

    Бот работает от имени сервиса, поэтому по умолчанию используется
    SUPABASE_SERVICE_ROLE_KEY, а при его отсутствии - SUPABASE_KEY.

    Args:
        url: URL проекта (по умолчанию SUPABASE_URL)
        key: Ключ API (по умолчанию из окружения)

    Raises:
        ValueError: Если URL или ключ не заданы
    """
    global _client
    if _client is not None and url is None and key is None:
        return _client

    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")

    if not url or not key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) must be set in .env file. "
            "Get them from your Supabase project settings."
        )

    client = create_client(url, key)
    if _client is None:
        _client = client
    return client
