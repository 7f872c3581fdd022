from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str
    horizon_months: int
    generation_max_iterations: int
    due_soon_days: int
    default_currency: str
    app_host: str
    app_port: int
    sqlite_busy_timeout_ms: int


def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./billtrack.db"),
        horizon_months=int(os.getenv("HORIZON_MONTHS", "3")),
        generation_max_iterations=int(os.getenv("GENERATION_MAX_ITERATIONS", "1000")),
        due_soon_days=int(os.getenv("DUE_SOON_DAYS", "3")),
        default_currency=os.getenv("DEFAULT_CURRENCY", "USD"),
        app_host=os.getenv("APP_HOST", "0.0.0.0"),
        app_port=int(os.getenv("APP_PORT", "8000")),
        sqlite_busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
    )
