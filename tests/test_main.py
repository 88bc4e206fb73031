"""Тесты для main.py и core_logic/supabase_client.py."""

import os
import pytest
from unittest.mock import MagicMock, patch

import core_logic.supabase_client as supabase_client
from core_logic.identity import StaticIdentityProvider
from db.sql_store import SqlRecordStore
from db.supabase_store import SupabaseRecordStore
from main import create_store_factory


class TestCreateStoreFactory:
    """Тесты для create_store_factory()."""

    def test_sql_backend(self):
        """Тест: backend sql создает SqlRecordStore для каждой личности."""
        with patch.dict(os.environ, {"DATABASE_URL": "sqlite://"}):
            factory = create_store_factory("sql")

        provider = StaticIdentityProvider("alice")
        store = factory(provider)

        assert isinstance(store, SqlRecordStore)
        assert store.identity_provider is provider

    def test_supabase_backend(self):
        """Тест: backend supabase использует общий клиент."""
        client = MagicMock()
        with patch("core_logic.supabase_client.get_supabase_client", return_value=client):
            factory = create_store_factory("SUPABASE")

        store = factory(StaticIdentityProvider("alice"))

        assert isinstance(store, SupabaseRecordStore)
        assert store.client is client

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="CHECKIN_BACKEND"):
            create_store_factory("redis")


class TestSupabaseClient:
    """Тесты для get_supabase_client()."""

    def test_missing_credentials(self):
        """Тест: без URL и ключа - понятная ошибка."""
        with patch.dict(os.environ, {}, clear=True), patch.object(supabase_client, "_client", None):
            with pytest.raises(ValueError, match="SUPABASE_URL"):
                supabase_client.get_supabase_client()

    def test_service_role_key_preferred(self):
        """Тест: ключ сервиса приоритетнее публичного, клиент создается один раз."""
        env = {
            "SUPABASE_URL": "https://project.supabase.co",
            "SUPABASE_KEY": "anon-key",
            "SUPABASE_SERVICE_ROLE_KEY": "service-key",
        }
        with patch.dict(os.environ, env, clear=True), patch.object(supabase_client, "_client", None):
            with patch("core_logic.supabase_client.create_client") as mock_create:
                first = supabase_client.get_supabase_client()
                second = supabase_client.get_supabase_client()

        mock_create.assert_called_once_with("https://project.supabase.co", "service-key")
        assert first is second
