from __future__ import annotations


class ConversionError(Exception):
    """Base class for every failure the conversion service reports."""

    retryable = False


class InvalidInput(ConversionError, ValueError):
    """Malformed currency code or non-finite amount."""


class UnsupportedPair(ConversionError):
    """The rate provider cannot quote this currency pair."""

    def __init__(self, base_currency: str, target_currency: str, message: str | None = None) -> None:
        self.base_currency = base_currency
        self.target_currency = target_currency
        super().__init__(message or f"Unsupported currency pair: {base_currency}/{target_currency}")


class UpstreamUnavailable(ConversionError):
    """Network failure, timeout or bad response from the rate provider."""

    retryable = True
