import logging
import math
from typing import NoReturn

from fastapi import Depends, FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import create_engine

from ledgerfx.config import load_settings
from ledgerfx.errors import ConversionError, InvalidInput, UnsupportedPair, UpstreamUnavailable
from ledgerfx.service import ConversionRequest, ConversionService, build_service
from ledgerfx.settings_store import SettingsStore

logger = logging.getLogger(__name__)

SETTINGS = load_settings()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SETTINGS.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

connect_args = {}
if SETTINGS.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(SETTINGS.database_url, connect_args=connect_args)
SETTINGS_STORE = SettingsStore(engine, system_default_currency=SETTINGS.default_currency)
CONVERSION_SERVICE = build_service(SETTINGS, settings_store=SETTINGS_STORE)

CONVERT_CACHE_CONTROL = "public, max-age=3600, stale-while-revalidate=86400"


@app.on_event("startup")
def init_db() -> None:
    SETTINGS_STORE.create_schema()


@app.on_event("shutdown")
def close_fetcher() -> None:
    CONVERSION_SERVICE.engine.fetcher.close()


def get_conversion_service() -> ConversionService:
    return CONVERSION_SERVICE


def get_settings_store() -> SettingsStore:
    return SETTINGS_STORE


class BatchConversionItem(BaseModel):
    amount: float
    from_currency: str
    to_currency: str


class BatchConversionPayload(BaseModel):
    items: list[BatchConversionItem]


class UserSettingsPayload(BaseModel):
    default_currency: str | None = None


class UserSettingsResponse(BaseModel):
    user_id: int
    default_currency: str


def get_user_id(x_user_id: str | None = Header(None, alias="x-user-id")) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        return int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc


def parse_amount(raw: str | None) -> float:
    try:
        amount = float(raw) if raw is not None else math.nan
    except ValueError:
        amount = math.nan
    if not math.isfinite(amount):
        raise HTTPException(status_code=400, detail="Invalid amount - must be a number")
    return amount


def raise_conversion_error(exc: ConversionError) -> NoReturn:
    if isinstance(exc, InvalidInput):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, UnsupportedPair):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if isinstance(exc, UpstreamUnavailable):
        logger.error("Currency conversion failed upstream: %s", exc)
        raise HTTPException(status_code=502, detail="Exchange rate provider unavailable.") from exc
    logger.exception("Unexpected currency conversion error")
    raise HTTPException(status_code=500, detail="Failed to convert currency.") from exc


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/currency/convert")
def convert_currency(
    amount: str | None = Query(None),
    from_currency: str | None = Query(None, alias="from"),
    to_currency: str | None = Query(None, alias="to"),
    service: ConversionService = Depends(get_conversion_service),
) -> JSONResponse:
    value = parse_amount(amount)
    if not from_currency or not to_currency:
        raise HTTPException(status_code=400, detail="Missing currency codes (from/to required)")
    try:
        result = service.convert_currency(value, from_currency, to_currency)
    except ConversionError as exc:
        raise_conversion_error(exc)
    return JSONResponse(
        content=result.to_payload(),
        headers={"Cache-Control": CONVERT_CACHE_CONTROL},
    )


@app.post("/currency/convert/batch")
def convert_currency_batch(
    payload: BatchConversionPayload,
    service: ConversionService = Depends(get_conversion_service),
) -> list[dict]:
    outcomes = service.convert_batch(
        [
            ConversionRequest(item.amount, item.from_currency, item.to_currency)
            for item in payload.items
        ]
    )
    results = []
    for index, outcome in enumerate(outcomes):
        if outcome.ok:
            results.append({"index": index, **outcome.result.to_payload()})
        else:
            results.append(
                {
                    "index": index,
                    "error": str(outcome.error),
                    "errorKind": type(outcome.error).__name__,
                }
            )
    return results


@app.get("/currency/convert-to-default")
def convert_to_default_currency(
    amount: str | None = Query(None),
    from_currency: str | None = Query(None, alias="from"),
    user_id: int = Depends(get_user_id),
    service: ConversionService = Depends(get_conversion_service),
) -> dict:
    value = parse_amount(amount)
    if not from_currency:
        raise HTTPException(status_code=400, detail="Missing currency code (from required)")
    try:
        result = service.convert_to_default_currency(user_id, value, from_currency)
    except ConversionError as exc:
        raise_conversion_error(exc)
    return result.to_payload()


@app.get("/users/me/settings", response_model=UserSettingsResponse)
def get_user_settings(
    user_id: int = Depends(get_user_id),
    store: SettingsStore = Depends(get_settings_store),
) -> UserSettingsResponse:
    return UserSettingsResponse(
        user_id=user_id,
        default_currency=store.get_default_currency(user_id),
    )


@app.put("/users/me/settings", response_model=UserSettingsResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    user_id: int = Depends(get_user_id),
    store: SettingsStore = Depends(get_settings_store),
) -> UserSettingsResponse:
    if payload.default_currency is None:
        raise HTTPException(status_code=400, detail="Default currency required.")
    try:
        default_currency = store.set_default_currency(user_id, payload.default_currency)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UserSettingsResponse(user_id=user_id, default_currency=default_currency)
