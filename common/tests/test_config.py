from decimal import Decimal

from common.config import Settings


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        settings = Settings()

        assert settings.max_amount == Decimal("10000")
        assert settings.low_balance_threshold == Decimal("20")
        assert settings.idle_timeout_minutes == 30
        assert settings.reap_interval_minutes == 60
        assert settings.invite_code_expiry_days == 7
        assert settings.invite_code_enabled is True

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("KWH_ADMIN_IDS", "1, 2;3")
        monkeypatch.setenv("KWH_ADMIN_CHAT_ID", "-100")
        monkeypatch.setenv("KWH_INVITE_CODE_ENABLED", "off")
        monkeypatch.setenv("KWH_MAX_AMOUNT", "500")
        monkeypatch.setenv("KWH_IDLE_TIMEOUT_MINUTES", "5")
        monkeypatch.setenv("KWH_LOG_LEVEL", "debug")
        monkeypatch.setenv("KWH_TEST_MODE", "1")

        settings = Settings.from_env()

        assert settings.admin_ids == [1, 2, 3]
        assert settings.admin_chat_id == -100
        assert settings.invite_code_enabled is False
        assert settings.max_amount == Decimal("500")
        assert settings.idle_timeout_minutes == 5
        assert settings.log_level == "DEBUG"
        assert settings.test_mode is True

    def test_notification_targets(self):
        assert Settings(admin_ids=[1, 2]).notification_targets == [1, 2]
        assert Settings(admin_ids=[1, 2], admin_chat_id=-7).notification_targets == [-7]
