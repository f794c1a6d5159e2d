from storefront.core.config import Settings


class TestSettingsFromEnv:
    def test_defaults(self, monkeypatch):
        for name in ("ALLOWED_LOCALES", "PAYMENT_WEBHOOK_SECRET", "DEFAULT_LOCALE"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env()
        assert settings.allowed_locales == ("en", "lv", "ru")
        assert settings.default_locale == "en"
        assert settings.payment_webhook_secret is None

    def test_locales_and_webhook_secret_from_environment(self, monkeypatch):
        monkeypatch.setenv("ALLOWED_LOCALES", "en, de ,fr,")
        monkeypatch.setenv("DEFAULT_LOCALE", "de")
        monkeypatch.setenv("PAYMENT_WEBHOOK_SECRET", "whsec_live")

        settings = Settings.from_env()

        assert settings.allowed_locales == ("en", "de", "fr")
        assert settings.default_locale == "de"
        assert settings.payment_webhook_secret == "whsec_live"

    def test_locale_fallback_uses_configured_list(self, order_creator, settings):
        settings.allowed_locales = ("en", "de")
        assert order_creator._locale("de") == "de"
        assert order_creator._locale("lv") == "en"
        assert order_creator._locale(None) == "en"
