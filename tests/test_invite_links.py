"""Тесты для core_logic/invite_links.py."""

import pytest

from core_logic.errors import InvalidInviteLinkError
from core_logic.invite_links import (
    build_accept_deep_link,
    build_entry_deep_link,
    build_invite_code_link,
    build_share_url,
    parse_entry_deep_link,
    parse_invite_token,
)
from core_logic.schemas import PromptType

TOKEN = "Ab3_-xYz09"
SHARE_URL = f"https://checkin.app/share/{TOKEN}"


class TestParseInviteToken:
    """Тесты для parse_invite_token()."""

    @pytest.mark.parametrize("raw", [
        TOKEN,
        f"  {TOKEN}\n",
        SHARE_URL,
        f"https://checkin.app/join?token={TOKEN}",
        f"rc://invite/{TOKEN}",
        f"rc://claim?token={TOKEN}",
        build_accept_deep_link(SHARE_URL),
        f"rc://accept?share={SHARE_URL}",
    ])
    def test_supported_forms(self, raw):
        """Тест: все формы ссылки сводятся к одному токену."""
        assert parse_invite_token(raw) == TOKEN

    def test_custom_scheme(self):
        """Тест: схема deep link берется из настроек."""
        assert parse_invite_token(f"couple://invite/{TOKEN}", scheme="couple") == TOKEN

    @pytest.mark.parametrize("raw", [
        "",
        "   ",
        "abc",
        "два слова",
        "ftp://checkin.app/share/abcdefgh",
        "rc://entry/morning",
        "rc://accept",
        "rc://accept?share=rc://accept?share=x",
        "https://checkin.app/",
    ])
    def test_invalid(self, raw):
        """Тест: нераспознанные ссылки -> InvalidInviteLinkError."""
        with pytest.raises(InvalidInviteLinkError):
            parse_invite_token(raw)

    def test_invalid_is_value_error(self):
        """Тест: ошибку можно поймать как ValueError."""
        with pytest.raises(ValueError):
            parse_invite_token("abc")


class TestBuildLinks:
    """Тесты для построения ссылок."""

    def test_share_url_strips_slash(self):
        """Тест: лишний слэш базового URL не дублируется."""
        assert build_share_url(TOKEN, "https://checkin.app/share/") == SHARE_URL

    def test_invite_code_link(self):
        assert build_invite_code_link(TOKEN) == f"rc://invite/{TOKEN}"

    def test_entry_deep_links(self):
        """Тест: ссылки напоминаний открывают нужный вопрос."""
        for prompt in PromptType:
            assert parse_entry_deep_link(build_entry_deep_link(prompt)) == prompt

    def test_entry_deep_link_unknown(self):
        """Тест: посторонние ссылки не считаются ссылками на запись."""
        assert parse_entry_deep_link("rc://entry/lunch") is None
        assert parse_entry_deep_link(SHARE_URL) is None
