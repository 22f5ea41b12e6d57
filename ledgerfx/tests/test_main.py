from datetime import datetime, timezone
import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from ledgerfx import main
from ledgerfx.conversion import ConversionEngine
from ledgerfx.errors import UnsupportedPair, UpstreamUnavailable
from ledgerfx.rate_fetcher import RateFetcher
from ledgerfx.service import ConversionService
from ledgerfx.settings_store import SettingsStore
from ledgerfx.ttl_cache import TTLCache

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class MockRateProvider:
    def __init__(self) -> None:
        self.calls = 0

    def fetch_spot_rate(self, base_currency: str, target_currency: str) -> float:
        self.calls += 1
        if base_currency == "JPY":
            raise UpstreamUnavailable("provider down")
        if (base_currency, target_currency) == ("USD", "IDR"):
            return 15500.0
        raise UnsupportedPair(base_currency, target_currency)


class ConversionApiTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self.store = SettingsStore(engine, system_default_currency="USD")
        self.store.create_schema()
        self.provider = MockRateProvider()
        fetcher = RateFetcher(provider=self.provider, cache=TTLCache(), now=lambda: FIXED_NOW)
        self.addCleanup(fetcher.close)
        self.service = ConversionService(ConversionEngine(fetcher), settings_store=self.store)

        main.app.dependency_overrides[main.get_conversion_service] = lambda: self.service
        main.app.dependency_overrides[main.get_settings_store] = lambda: self.store
        self.addCleanup(main.app.dependency_overrides.clear)
        self.client = TestClient(main.app)

    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_convert_returns_result_with_cache_headers(self) -> None:
        response = self.client.get(
            "/currency/convert", params={"amount": "-150", "from": "usd", "to": "IDR"}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "originalAmount": -150.0,
                "originalCurrency": "USD",
                "convertedAmount": -2325000.0,
                "convertedCurrency": "IDR",
                "exchangeRate": 15500.0,
                "rateTimestamp": "2024-05-01T12:00:00+00:00",
                "estimatedRate": False,
            },
        )
        self.assertEqual(
            response.headers["cache-control"],
            "public, max-age=3600, stale-while-revalidate=86400",
        )

    def test_convert_rejects_bad_amount(self) -> None:
        for amount in (None, "abc", "nan", "inf"):
            with self.subTest(amount=amount):
                params = {"from": "USD", "to": "IDR"}
                if amount is not None:
                    params["amount"] = amount
                response = self.client.get("/currency/convert", params=params)
                self.assertEqual(response.status_code, 400)
        self.assertEqual(self.provider.calls, 0)

    def test_convert_requires_both_currencies(self) -> None:
        response = self.client.get("/currency/convert", params={"amount": "1", "from": "USD"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.provider.calls, 0)

    def test_unknown_currency_is_client_error(self) -> None:
        response = self.client.get(
            "/currency/convert", params={"amount": "1", "from": "USD", "to": "QQQ"}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.provider.calls, 0)

    def test_unsupported_pair_maps_to_422(self) -> None:
        response = self.client.get(
            "/currency/convert", params={"amount": "1", "from": "EUR", "to": "IDR"}
        )

        self.assertEqual(response.status_code, 422)
        self.assertIn("Unsupported currency pair", response.json()["detail"])

    def test_upstream_failure_maps_to_502(self) -> None:
        with self.assertLogs("ledgerfx.main", level="ERROR"):
            response = self.client.get(
                "/currency/convert", params={"amount": "1", "from": "JPY", "to": "USD"}
            )

        self.assertEqual(response.status_code, 502)

    def test_batch_reports_per_item_errors(self) -> None:
        response = self.client.post(
            "/currency/convert/batch",
            json={
                "items": [
                    {"amount": 2, "from_currency": "USD", "to_currency": "IDR"},
                    {"amount": 3, "from_currency": "EUR", "to_currency": "IDR"},
                    {"amount": 4, "from_currency": "EUR", "to_currency": "EUR"},
                ]
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body[0]["convertedAmount"], 31000.0)
        self.assertEqual(body[1]["index"], 1)
        self.assertIn("error", body[1])
        self.assertEqual(body[1]["errorKind"], "UnsupportedPair")
        self.assertEqual(body[2]["convertedAmount"], 4.0)

    def test_settings_round_trip_and_default_conversion(self) -> None:
        headers = {"x-user-id": "3"}
        self.assertEqual(
            self.client.get("/users/me/settings", headers=headers).json(),
            {"user_id": 3, "default_currency": "USD"},
        )

        response = self.client.put(
            "/users/me/settings", headers=headers, json={"default_currency": "idr"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["default_currency"], "IDR")

        response = self.client.get(
            "/currency/convert-to-default",
            headers=headers,
            params={"amount": "2", "from": "USD"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["convertedAmount"], 31000.0)

    def test_settings_validation(self) -> None:
        self.assertEqual(self.client.get("/users/me/settings").status_code, 401)
        self.assertEqual(
            self.client.get("/users/me/settings", headers={"x-user-id": "abc"}).status_code,
            400,
        )
        response = self.client.put(
            "/users/me/settings", headers={"x-user-id": "3"}, json={"default_currency": "ZZZ"}
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.put("/users/me/settings", headers={"x-user-id": "3"}, json={})
        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
