from __future__ import annotations

from ledgerfx.errors import InvalidInput

# Active ISO 4217 codes.
ISO_4217_CODES: frozenset[str] = frozenset(
    """
    AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND BOB BRL
    BSD BTN BWP BYN BZD CAD CDF CHF CLP CNY COP CRC CUP CVE CZK DJF DKK DOP DZD EGP
    ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GNF GTQ GYD HKD HNL HTG HUF IDR ILS INR
    IQD IRR ISK JMD JOD JPY KES KGS KHR KMF KPW KRW KWD KYD KZT LAK LBP LKR LRD LSL
    LYD MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MYR MZN NAD NGN NIO NOK NPR
    NZD OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD RUB RWF SAR SBD SCR SDG SEK SGD
    SHP SLE SOS SRD SSP STN SVC SYP SZL THB TJS TMT TND TOP TRY TTD TWD TZS UAH UGX
    USD UYU UZS VES VND VUV WST XAF XCD XOF XPF YER ZAR ZMW ZWL
    """.split()
)

# Also quoted by ExchangeRate-API: territorial pounds and dollars, SDR.
PROVIDER_CODES: frozenset[str] = frozenset(
    {"FOK", "GGP", "IMP", "JEP", "KID", "TVD", "XDR"}
)

KNOWN_CURRENCIES: frozenset[str] = ISO_4217_CODES | PROVIDER_CODES


def normalize_currency(value: str) -> str:
    if not isinstance(value, str):
        raise InvalidInput("Currency must be a 3-letter ISO 4217 code.")
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise InvalidInput("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def validate_currency(value: str, known: frozenset[str] = KNOWN_CURRENCIES) -> str:
    """Normalize ``value`` and require it to be a known currency."""
    normalized = normalize_currency(value)
    if normalized not in known:
        raise InvalidInput(f"Unknown currency: {normalized}")
    return normalized


def safe_normalize_currency(value: str | None, fallback: str) -> str:
    if not value:
        return fallback
    try:
        return normalize_currency(value)
    except InvalidInput:
        return fallback


def pair_key(base_currency: str, target_currency: str) -> str:
    return f"{normalize_currency(base_currency)}_{normalize_currency(target_currency)}"
