import unittest

from ledgerfx.config import Settings, load_settings


class LoadSettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        self.assertEqual(load_settings({}), Settings())

    def test_reads_environment(self) -> None:
        settings = load_settings(
            {
                "DEFAULT_CURRENCY": " idr ",
                "FX_CACHE_CAPACITY": "50",
                "FX_CACHE_TTL_SECONDS": "90.5",
                "FX_FETCH_TIMEOUT_SECONDS": "2",
                "FX_FALLBACK_TTL_SECONDS": "45",
                "FX_PRIMARY_API_URL": "https://rates.test/latest/",
                "FX_USE_STATIC_FALLBACK": "no",
                "DATABASE_URL": "sqlite://",
            }
        )

        self.assertEqual(settings.default_currency, "IDR")
        self.assertEqual(settings.cache_capacity, 50)
        self.assertEqual(settings.cache_ttl_seconds, 90.5)
        self.assertEqual(settings.fetch_timeout_seconds, 2.0)
        self.assertEqual(settings.fallback_ttl_seconds, 45.0)
        self.assertEqual(settings.primary_api_url, "https://rates.test/latest")
        self.assertFalse(settings.use_static_fallback)
        self.assertEqual(settings.database_url, "sqlite://")

    def test_invalid_values_fall_back_to_defaults(self) -> None:
        with self.assertLogs("ledgerfx.config", level="WARNING") as logs:
            settings = load_settings(
                {
                    "DEFAULT_CURRENCY": "dollars",
                    "FX_CACHE_CAPACITY": "lots",
                    "FX_CACHE_TTL_SECONDS": "-5",
                    "FX_FETCH_TIMEOUT_SECONDS": "nan",
                }
            )

        self.assertEqual(settings.default_currency, "USD")
        self.assertEqual(settings.cache_capacity, 200)
        self.assertEqual(settings.cache_ttl_seconds, 3600)
        self.assertEqual(settings.fetch_timeout_seconds, 10.0)
        self.assertEqual(len(logs.output), 4)

    def test_blank_numbers_use_defaults(self) -> None:
        settings = load_settings({"FX_CACHE_CAPACITY": "  "})

        self.assertEqual(settings.cache_capacity, 200)


if __name__ == "__main__":
    unittest.main()
