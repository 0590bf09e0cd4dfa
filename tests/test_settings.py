import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from pricegate.config.settings import DEFAULT_EXCHANGE_SUFFIXES, Settings


class TestSettings(unittest.TestCase):
    def test_defaults_without_env(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.QUOTE_PROVIDER, "yahoo")
        self.assertEqual(settings.RATE_PROVIDER, "frankfurter")
        self.assertEqual(settings.REPORTING_CURRENCY, "EUR")
        self.assertEqual(settings.DEFAULT_QUOTE_CURRENCY, "USD")
        self.assertEqual(settings.QUOTE_FRESHNESS_SEC, 1800)
        self.assertEqual(settings.MIN_BATCH_INTERVAL_SEC, 30)
        self.assertEqual(settings.NEGATIVE_CACHE_TTL_SEC, 0)
        self.assertEqual(settings.EXCHANGE_SUFFIXES, DEFAULT_EXCHANGE_SUFFIXES)
        self.assertEqual(settings.FALLBACK_RATES["USD"], 0.92)

    def test_alpha_vantage_requires_api_key(self):
        with patch.dict(os.environ, {"QUOTE_PROVIDER": "alpha_vantage"}, clear=True):
            with self.assertRaises(ValidationError):
                Settings.from_env()

        env = {"QUOTE_PROVIDER": "alpha_vantage", "ALPHA_VANTAGE_API_KEY": "demo"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.ALPHA_VANTAGE_API_KEY, "demo")

    def test_unknown_provider_fails_validation(self):
        with patch.dict(os.environ, {"RATE_PROVIDER": "ecb-scraper"}, clear=True):
            with self.assertRaises(ValidationError):
                Settings.from_env()

    def test_parses_list_and_json_values(self):
        env = {
            "EXCHANGE_SUFFIXES": " .L, .DE ,",
            "SYMBOL_OVERRIDES": '{"cspx": ["cspx.l", "CSPX.AS"]}',
            "FALLBACK_RATES": '{"usd": 0.93, "SEK": "0.088"}',
            "REPORTING_CURRENCY": " eur ",
            "UPSTREAM_TIMEOUT_SEC": "2.5",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.EXCHANGE_SUFFIXES, [".L", ".DE"])
        self.assertEqual(settings.SYMBOL_OVERRIDES, {"CSPX": ["CSPX.L", "CSPX.AS"]})
        self.assertEqual(settings.FALLBACK_RATES, {"USD": 0.93, "SEK": 0.088})
        self.assertEqual(settings.REPORTING_CURRENCY, "EUR")
        self.assertEqual(settings.UPSTREAM_TIMEOUT_SEC, 2.5)

    def test_rejects_non_positive_fallback_rate_and_timeout(self):
        with patch.dict(os.environ, {"FALLBACK_RATES": '{"USD": 0}'}, clear=True):
            with self.assertRaises(ValidationError):
                Settings.from_env()
        with patch.dict(os.environ, {"UPSTREAM_TIMEOUT_SEC": "0"}, clear=True):
            with self.assertRaises(ValidationError):
                Settings.from_env()


    def test_malformed_json_mapping_is_a_validation_error(self):
        for name in ("SYMBOL_OVERRIDES", "FALLBACK_RATES"):
            with patch.dict(os.environ, {name: "{not json"}, clear=True):
                with self.assertRaises(ValidationError):
                    Settings.from_env()

    def test_cors_origins_from_csv(self):
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(Settings.from_env().CORS_ALLOW_ORIGINS, ["*"])
        env = {"CORS_ALLOW_ORIGINS": "https://app.example.com, http://localhost:5173"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.CORS_ALLOW_ORIGINS, ["https://app.example.com", "http://localhost:5173"])


if __name__ == "__main__":
    unittest.main()
