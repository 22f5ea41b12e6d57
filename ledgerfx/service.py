from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Iterable, Sequence

from ledgerfx.config import Settings
from ledgerfx.conversion import ConversionEngine, ConversionResult, coerce_amount
from ledgerfx.currencies import KNOWN_CURRENCIES, safe_normalize_currency, validate_currency
from ledgerfx.errors import ConversionError, InvalidInput
from ledgerfx.rate_fetcher import RateFetcher, RateQuote
from ledgerfx.rate_providers import RateProvider, build_rate_provider
from ledgerfx.settings_store import SettingsStore
from ledgerfx.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

Amount = float | int | Decimal


@dataclass(frozen=True)
class ConversionRequest:
    amount: Amount
    from_currency: str
    to_currency: str


@dataclass(frozen=True)
class ConversionOutcome:
    result: ConversionResult | None = None
    error: ConversionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConversionService:
    """Entry point for every currency conversion in the application.

    Holds no cached state itself: rates live in the fetcher's cache, which is
    handed in at construction so tests can substitute their own.
    """

    def __init__(
        self,
        engine: ConversionEngine,
        settings_store: SettingsStore | None = None,
        known_currencies: frozenset[str] = KNOWN_CURRENCIES,
        batch_workers: int = 8,
    ) -> None:
        self.engine = engine
        self.settings_store = settings_store
        self.known_currencies = known_currencies
        self.batch_workers = batch_workers

    def convert_currency(self, amount: Amount, from_code: str, to_code: str) -> ConversionResult:
        coerce_amount(amount)
        source = validate_currency(from_code, self.known_currencies)
        target = validate_currency(to_code, self.known_currencies)
        return self.engine.convert(amount, source, target)

    def try_convert(self, amount: Amount, from_code: str, to_code: str) -> ConversionOutcome:
        try:
            return ConversionOutcome(result=self.convert_currency(amount, from_code, to_code))
        except ConversionError as exc:
            return ConversionOutcome(error=exc)

    def convert_or_original(self, amount: Amount, from_code: str, to_code: str) -> ConversionResult:
        """Convert for display, falling back to the unconverted amount on failure."""
        outcome = self.try_convert(amount, from_code, to_code)
        if outcome.ok:
            return outcome.result
        logger.debug("Showing %s unconverted: %s", from_code, outcome.error)
        try:
            value = coerce_amount(amount)
        except InvalidInput:
            value = amount
        currency = safe_normalize_currency(from_code, from_code)
        return ConversionResult(
            original_amount=value,
            original_currency=currency,
            converted_amount=value,
            converted_currency=currency,
            exchange_rate=1.0,
            rate_timestamp=self.engine.fetcher.now(),
        )

    def convert_batch(self, requests: Sequence[ConversionRequest]) -> list[ConversionOutcome]:
        """Convert many amounts, resolving each distinct pair only once.

        Results come back in request order. A pair whose rate cannot be
        resolved fails only the requests that need it.
        """
        if not requests:
            return []

        pairs: list[tuple[str, str] | ConversionError] = []
        for request in requests:
            try:
                coerce_amount(request.amount)
                pairs.append(
                    (
                        validate_currency(request.from_currency, self.known_currencies),
                        validate_currency(request.to_currency, self.known_currencies),
                    )
                )
            except InvalidInput as exc:
                pairs.append(exc)

        unique_pairs = {pair for pair in pairs if isinstance(pair, tuple)}
        quotes = self._resolve_pairs(unique_pairs)

        outcomes: list[ConversionOutcome] = []
        for request, pair in zip(requests, pairs):
            if isinstance(pair, ConversionError):
                outcomes.append(ConversionOutcome(error=pair))
                continue
            quote = quotes[pair]
            if isinstance(quote, ConversionError):
                outcomes.append(ConversionOutcome(error=quote))
            else:
                outcomes.append(ConversionOutcome(result=self.engine.apply(request.amount, quote)))
        return outcomes

    def convert_to_base_currency(
        self, amounts: Sequence[tuple[Amount, str]], base_currency: str
    ) -> list[Amount]:
        outcomes = self.convert_batch(
            [ConversionRequest(amount, currency, base_currency) for amount, currency in amounts]
        )
        return [
            outcome.result.converted_amount if outcome.ok else amount
            for (amount, _), outcome in zip(amounts, outcomes)
        ]

    def refresh_rates(self, currencies: Iterable[str], base_currency: str) -> list[str]:
        """Warm the cache for ``base_currency`` against each currency.

        Returns the codes whose rate could not be refreshed.
        """
        base = validate_currency(base_currency, self.known_currencies)
        failed: list[str] = []
        pairs: set[tuple[str, str]] = set()
        for currency in currencies:
            try:
                target = validate_currency(currency, self.known_currencies)
            except InvalidInput:
                failed.append(currency)
                continue
            if target != base:
                pairs.add((base, target))

        for (_, target), quote in self._resolve_pairs(pairs).items():
            if isinstance(quote, ConversionError):
                logger.warning("Failed to refresh rate for %s/%s: %s", base, target, quote)
                failed.append(target)
        return sorted(failed)

    def convert_to_default_currency(self, user_id: int, amount: Amount, from_code: str) -> ConversionResult:
        if self.settings_store is None:
            raise RuntimeError("No settings store configured.")
        target = self.settings_store.get_default_currency(user_id)
        return self.convert_currency(amount, from_code, target)

    def _resolve_pairs(
        self, pairs: set[tuple[str, str]]
    ) -> dict[tuple[str, str], RateQuote | ConversionError]:
        def resolve(pair: tuple[str, str]) -> RateQuote | ConversionError:
            try:
                return self.engine.fetcher.get_rate(*pair)
            except ConversionError as exc:
                return exc

        if not pairs:
            return {}
        ordered = sorted(pairs)
        with ThreadPoolExecutor(max_workers=min(self.batch_workers, len(ordered))) as executor:
            return dict(zip(ordered, executor.map(resolve, ordered)))


def build_service(
    settings: Settings,
    settings_store: SettingsStore | None = None,
    provider: RateProvider | None = None,
) -> ConversionService:
    """Wire the process-wide cache, fetcher and engine behind a service."""
    if provider is None:
        provider = build_rate_provider(
            primary_url=settings.primary_api_url,
            fallback_url=settings.fallback_api_url,
            timeout=settings.fetch_timeout_seconds,
            static_fallback=settings.use_static_fallback,
        )
    fetcher = RateFetcher(
        provider=provider,
        cache=TTLCache(max_size=settings.cache_capacity),
        ttl_seconds=settings.cache_ttl_seconds,
        fetch_timeout=settings.fetch_timeout_seconds,
        fallback_ttl_seconds=settings.fallback_ttl_seconds,
    )
    return ConversionService(ConversionEngine(fetcher), settings_store=settings_store)
