from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import math
from typing import Any, Mapping, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import urlopen

from ledgerfx.currencies import normalize_currency
from ledgerfx.errors import ConversionError, UnsupportedPair, UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_RATES: dict[str, float] = {
    "USD": 1.0,
    "EUR": 0.92,
    "GBP": 0.79,
    "JPY": 147.50,
    "CAD": 1.34,
    "AUD": 1.52,
    "NZD": 1.64,
    "CHF": 0.88,
    "SEK": 10.45,
    "SGD": 1.35,
    "IDR": 15500.0,
}


class IndicativeRate(float):
    """A rate taken from the built-in table rather than quoted live."""


class RateProvider(Protocol):
    def fetch_spot_rate(self, base_currency: str, target_currency: str) -> float:
        ...


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as target currency per 1 USD; other pairs are crossed
    through USD.
    """

    rates: Mapping[str, float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or DEFAULT_RATES))

    def fetch_spot_rate(self, base_currency: str, target_currency: str) -> float:
        base = normalize_currency(base_currency)
        target = normalize_currency(target_currency)
        try:
            base_rate = self.rates[base]
            target_rate = self.rates[target]
        except KeyError as exc:
            raise UnsupportedPair(base, target) from exc
        return IndicativeRate(target_rate / base_rate)


@dataclass(frozen=True)
class ExchangeRateApiProvider:
    """ExchangeRate-API latest rates; covers around 165 currencies."""

    base_url: str = "https://api.exchangerate-api.com/v4/latest"
    timeout: float = 10.0

    def fetch_spot_rate(self, base_currency: str, target_currency: str) -> float:
        base = normalize_currency(base_currency)
        target = normalize_currency(target_currency)
        payload = _fetch_json(f"{self.base_url}/{base}", self.timeout, base, target)
        return _extract_rate(payload, base, target)


@dataclass(frozen=True)
class FrankfurterRateProvider:
    """ECB reference rates from Frankfurter; around 30 major currencies."""

    base_url: str = "https://api.frankfurter.app"
    timeout: float = 10.0

    def fetch_spot_rate(self, base_currency: str, target_currency: str) -> float:
        base = normalize_currency(base_currency)
        target = normalize_currency(target_currency)
        query = urlencode({"from": base, "to": target})
        payload = _fetch_json(f"{self.base_url}/latest?{query}", self.timeout, base, target)
        return _extract_rate(payload, base, target)


@dataclass(frozen=True)
class CompositeRateProvider:
    primary: RateProvider
    fallback: RateProvider

    def fetch_spot_rate(self, base_currency: str, target_currency: str) -> float:
        try:
            return self.primary.fetch_spot_rate(base_currency, target_currency)
        except UnsupportedPair as exc:
            primary_error: ConversionError = exc
        except UpstreamUnavailable as exc:
            logger.warning(
                "Primary rate provider failed for %s/%s, trying fallback: %s",
                base_currency,
                target_currency,
                exc,
            )
            primary_error = exc

        try:
            return self.fallback.fetch_spot_rate(base_currency, target_currency)
        except UnsupportedPair:
            # The pair is only reported unsupported when no provider was down.
            if isinstance(primary_error, UpstreamUnavailable):
                raise primary_error from None
            raise


def build_rate_provider(
    primary_url: str,
    fallback_url: str,
    timeout: float,
    static_fallback: bool = True,
) -> RateProvider:
    provider: RateProvider = CompositeRateProvider(
        primary=ExchangeRateApiProvider(base_url=primary_url, timeout=timeout),
        fallback=FrankfurterRateProvider(base_url=fallback_url, timeout=timeout),
    )
    if static_fallback:
        provider = CompositeRateProvider(primary=provider, fallback=StaticRateProvider())
    return provider


def _fetch_json(url: str, timeout: float, base: str, target: str) -> Any:
    try:
        with urlopen(url, timeout=timeout) as response:
            return json.load(response)
    except HTTPError as exc:
        if exc.code == 404:
            raise UnsupportedPair(base, target) from exc
        raise UpstreamUnavailable(f"Rate provider returned HTTP {exc.code} for {base}/{target}") from exc
    except (URLError, TimeoutError, OSError, json.JSONDecodeError) as exc:
        raise UpstreamUnavailable(f"Rate provider unavailable for {base}/{target}") from exc


def _extract_rate(payload: Any, base: str, target: str) -> float:
    rates = payload.get("rates") if isinstance(payload, dict) else None
    if not isinstance(rates, dict):
        raise UpstreamUnavailable("Rate provider response missing rates")
    if target not in rates:
        raise UnsupportedPair(base, target)
    try:
        rate = float(rates[target])
    except (TypeError, ValueError, OverflowError) as exc:
        raise UpstreamUnavailable(f"Rate provider returned a non-numeric rate for {base}/{target}") from exc
    if not math.isfinite(rate) or rate <= 0:
        raise UpstreamUnavailable(f"Rate provider returned an invalid rate for {base}/{target}")
    return rate
