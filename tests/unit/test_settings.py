"""Unit tests for config/settings.py."""

from pathlib import Path

from config.settings import Settings, get_settings


class TestResolvedDatabasePath:
    def test_default_path(self):
        s = Settings(database_path=Path("nyamedia.db"))
        assert s.resolved_database_path == Path("nyamedia.db")

    def test_dot_path_resolves_to_default(self):
        s = Settings(database_path=Path("."))
        assert s.resolved_database_path == Path("nyamedia.db")

    def test_valid_custom_path(self):
        s = Settings(database_path=Path("/data/bot.db"))
        assert s.resolved_database_path == Path("/data/bot.db")


class TestChatIdLists:
    def test_comma_separated_env(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_NOTIFY_CHATS", "-1001, -1002")
        monkeypatch.setenv("ADMIN_CHAT_IDS", "[42]")
        s = Settings()
        assert s.webhook_notify_chats == [-1001, -1002]
        assert s.admin_chat_ids == [42]

    def test_empty_env(self, monkeypatch):
        monkeypatch.setenv("DISABLED_USERS", "")
        assert Settings().disabled_users == []

    def test_list_values(self):
        assert Settings(disabled_users=[7, 8]).disabled_users == [7, 8]


class TestEmbyConfigured:
    def test_requires_url_and_token(self):
        assert Settings(emby_url="https://emby", emby_token="k").emby_configured is True
        assert Settings(emby_url="https://emby", emby_token=None).emby_configured is False
        assert Settings(emby_url=None, emby_token="k").emby_configured is False


class TestGetSettings:
    def test_returns_settings_instance(self):
        get_settings.cache_clear()
        s = get_settings()
        assert isinstance(s, Settings)

    def test_caches_result(self):
        get_settings.cache_clear()
        s1 = get_settings()
        s2 = get_settings()
        assert s1 is s2
        get_settings.cache_clear()
