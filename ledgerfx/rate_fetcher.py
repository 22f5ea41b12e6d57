from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FetchTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import math
import threading
from typing import Callable

from ledgerfx.currencies import normalize_currency, pair_key
from ledgerfx.errors import ConversionError, UpstreamUnavailable
from ledgerfx.rate_providers import IndicativeRate, RateProvider
from ledgerfx.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_RATE_TTL_SECONDS = 60 * 60
DEFAULT_FALLBACK_TTL_SECONDS = 5 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedRate:
    rate: float
    fetched_at: datetime
    estimated: bool = False


@dataclass(frozen=True)
class RateQuote:
    base_currency: str
    target_currency: str
    rate: float
    fetched_at: datetime
    estimated: bool = False


class RateFetcher:
    """Resolves spot rates through the cache, fetching each missing pair once.

    Concurrent callers that miss on the same pair share one upstream request:
    the first caller registers a future for the pair and performs the fetch,
    later callers block on that future. The registration is dropped as soon as
    the fetch resolves, so a failure is never remembered.
    """

    def __init__(
        self,
        provider: RateProvider,
        cache: TTLCache[CachedRate] | None = None,
        ttl_seconds: float = DEFAULT_RATE_TTL_SECONDS,
        fetch_timeout: float = 10.0,
        fallback_ttl_seconds: float = DEFAULT_FALLBACK_TTL_SECONDS,
        now: Callable[[], datetime] = utc_now,
        max_workers: int = 8,
    ) -> None:
        self.provider = provider
        self.cache = cache if cache is not None else TTLCache()
        self.ttl_seconds = ttl_seconds
        self.fetch_timeout = fetch_timeout
        self.fallback_ttl_seconds = fallback_ttl_seconds
        self.now = now
        self._inflight: dict[str, Future[RateQuote]] = {}
        self._inflight_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fx-fetch")

    def get_rate(self, base_currency: str, target_currency: str) -> RateQuote:
        base = normalize_currency(base_currency)
        target = normalize_currency(target_currency)
        if base == target:
            return RateQuote(base, target, 1.0, self.now())

        key = pair_key(base, target)
        quote = self._cached_quote(key, base, target)
        if quote is not None:
            return quote

        with self._inflight_lock:
            # A fetch may have completed between the read above and taking the lock.
            quote = self._cached_quote(key, base, target)
            if quote is not None:
                return quote
            pending = self._inflight.get(key)
            is_leader = pending is None
            if is_leader:
                pending = Future()
                self._inflight[key] = pending

        if is_leader:
            self._fetch(key, base, target, pending)
        else:
            logger.debug("Waiting on in-flight fetch for %s", key)
        return pending.result()

    def in_flight(self) -> int:
        with self._inflight_lock:
            return len(self._inflight)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _cached_quote(self, key: str, base: str, target: str) -> RateQuote | None:
        cached = self.cache.get(key)
        if cached is None:
            return None
        logger.debug("Rate cache hit for %s", key)
        return RateQuote(base, target, cached.rate, cached.fetched_at, cached.estimated)

    def _fetch(self, key: str, base: str, target: str, pending: Future[RateQuote]) -> None:
        try:
            rate, estimated = self._call_provider(base, target)
            fetched_at = self.now()
            ttl_seconds = min(self.ttl_seconds, self.fallback_ttl_seconds) if estimated else self.ttl_seconds
            self.cache.set(
                key,
                CachedRate(rate=rate, fetched_at=fetched_at, estimated=estimated),
                ttl_seconds,
            )
        except ConversionError as exc:
            error = exc
        except Exception as exc:
            error = UpstreamUnavailable(f"Rate fetch for {base}/{target} failed: {exc}")
            error.__cause__ = exc
        except BaseException:
            self._release(key)
            pending.set_exception(UpstreamUnavailable(f"Rate fetch for {base}/{target} was interrupted"))
            raise
        else:
            logger.info("Fetched %s rate %s%s", key, rate, " (indicative)" if estimated else "")
            self._release(key)
            pending.set_result(RateQuote(base, target, rate, fetched_at, estimated))
            return

        logger.debug("Rate fetch for %s failed: %s", key, error)
        self._release(key)
        pending.set_exception(error)

    def _call_provider(self, base: str, target: str) -> tuple[float, bool]:
        try:
            call = self._executor.submit(self.provider.fetch_spot_rate, base, target)
            rate = call.result(timeout=self.fetch_timeout)
        except FetchTimeout as exc:
            call.cancel()
            raise UpstreamUnavailable(
                f"Timed out after {self.fetch_timeout}s fetching {base}/{target}"
            ) from exc
        except ConversionError:
            raise
        except Exception as exc:
            raise UpstreamUnavailable(f"Rate provider failed for {base}/{target}: {exc}") from exc

        estimated = isinstance(rate, IndicativeRate)
        try:
            rate = float(rate)
        except (TypeError, ValueError, OverflowError) as exc:
            raise UpstreamUnavailable(f"Rate provider returned a non-numeric rate for {base}/{target}") from exc
        if not math.isfinite(rate) or rate <= 0:
            raise UpstreamUnavailable(f"Rate provider returned an invalid rate for {base}/{target}")
        return rate, estimated

    def _release(self, key: str) -> None:
        with self._inflight_lock:
            self._inflight.pop(key, None)
