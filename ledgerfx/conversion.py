from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import math
from numbers import Real

from ledgerfx.currencies import normalize_currency
from ledgerfx.errors import InvalidInput
from ledgerfx.rate_fetcher import RateFetcher, RateQuote


@dataclass(frozen=True)
class ConversionResult:
    original_amount: float
    original_currency: str
    converted_amount: float
    converted_currency: str
    exchange_rate: float
    rate_timestamp: datetime
    estimated_rate: bool = False

    def to_payload(self) -> dict:
        return {
            "originalAmount": self.original_amount,
            "originalCurrency": self.original_currency,
            "convertedAmount": self.converted_amount,
            "convertedCurrency": self.converted_currency,
            "exchangeRate": self.exchange_rate,
            "rateTimestamp": self.rate_timestamp.isoformat(),
            "estimatedRate": self.estimated_rate,
        }


def coerce_amount(amount: float | int | Decimal) -> float:
    if isinstance(amount, bool) or not isinstance(amount, (Real, Decimal)):
        raise InvalidInput("Amount must be a number.")
    value = float(amount)
    if not math.isfinite(value):
        raise InvalidInput("Amount must be a finite number.")
    return value


def apply_rate(amount: float, rate: float) -> float:
    """Scale ``amount`` by ``rate`` keeping the sign of the original amount.

    Negative amounts are liabilities; the magnitude is converted and the sign put
    back, so no rounding or sign flip can come from the multiplication.
    """
    converted = abs(amount) * rate
    return -converted if amount < 0 else converted


class ConversionEngine:
    def __init__(self, fetcher: RateFetcher) -> None:
        self.fetcher = fetcher

    def convert(self, amount: float | int | Decimal, source_currency: str, target_currency: str) -> ConversionResult:
        value = coerce_amount(amount)
        source = normalize_currency(source_currency)
        target = normalize_currency(target_currency)

        if source == target:
            return ConversionResult(
                original_amount=value,
                original_currency=source,
                converted_amount=value,
                converted_currency=target,
                exchange_rate=1.0,
                rate_timestamp=self.fetcher.now(),
            )

        return self.apply(value, self.fetcher.get_rate(source, target))

    def apply(self, amount: float | int | Decimal, quote: RateQuote) -> ConversionResult:
        value = coerce_amount(amount)
        return ConversionResult(
            original_amount=value,
            original_currency=quote.base_currency,
            converted_amount=apply_rate(value, quote.rate),
            converted_currency=quote.target_currency,
            exchange_rate=quote.rate,
            rate_timestamp=quote.fetched_at,
            estimated_rate=quote.estimated,
        )
