from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine

from ledgerfx.currencies import normalize_currency, validate_currency
from ledgerfx.errors import InvalidInput

metadata = MetaData()

user_settings = Table(
    "user_settings",
    metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=False),
    Column("default_currency", String(3), nullable=False),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)


class SettingsStore:
    """Per-user reporting currency, backed by the ``user_settings`` table."""

    def __init__(self, engine: Engine, system_default_currency: str = "USD") -> None:
        self.engine = engine
        self.system_default_currency = normalize_currency(system_default_currency)

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    def get_default_currency(self, user_id: int) -> str:
        with self.engine.begin() as conn:
            stored = conn.execute(
                select(user_settings.c.default_currency).where(user_settings.c.user_id == user_id)
            ).scalar_one_or_none()
        if stored:
            try:
                return normalize_currency(stored)
            except InvalidInput:
                pass
        return self.system_default_currency

    def set_default_currency(self, user_id: int, currency: str) -> str:
        normalized = validate_currency(currency)
        with self.engine.begin() as conn:
            result = conn.execute(
                update(user_settings)
                .where(user_settings.c.user_id == user_id)
                .values(default_currency=normalized, updated_at=func.now())
            )
            if result.rowcount == 0:
                conn.execute(
                    insert(user_settings).values(user_id=user_id, default_currency=normalized)
                )
        return normalized
