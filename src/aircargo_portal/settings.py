from __future__ import annotations
import logging
from datetime import time
from decimal import Decimal
from pydantic_settings import BaseSettings
from pydantic import Field
from urllib.parse import quote_plus, urlparse, urlunparse

logger = logging.getLogger("aircargo-api")

class Settings(BaseSettings):
    # Prefer a full DATABASE_URL; or supply PG* parts and we'll build it.
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    pg_host: str | None = Field(default=None, alias="PGHOST")
    pg_port: int = Field(default=5432, alias="PGPORT")
    pg_user: str | None = Field(default=None, alias="PGUSER")
    pg_password: str | None = Field(default=None, alias="PGPASSWORD")
    pg_db: str | None = Field(default=None, alias="PGDATABASE")

    allow_origins: str = Field(default="*", alias="ALLOW_ORIGINS")
    request_timeout: int = Field(default=30, alias="REQUEST_TIMEOUT")

    # Booking windows
    business_timezone: str = Field(default="America/New_York", alias="BUSINESS_TIMEZONE")
    default_open_time: time = Field(default=time(8, 0), alias="DEFAULT_OPEN_TIME")
    default_close_time: time = Field(default=time(17, 0), alias="DEFAULT_CLOSE_TIME")
    booking_window_hours: int = Field(default=2, alias="BOOKING_WINDOW_HOURS")
    booking_horizon_days: int = Field(default=30, alias="BOOKING_HORIZON_DAYS")
    holiday_country: str = Field(default="US", alias="HOLIDAY_COUNTRY")
    holiday_subdivision: str | None = Field(default=None, alias="HOLIDAY_SUBDIVISION")

    # Pickup service area (HQ defaults to Kearny, NJ)
    service_radius_miles: Decimal = Field(default=Decimal("25"), alias="SERVICE_RADIUS_MILES")
    hq_latitude: float = Field(default=40.7684, alias="HQ_LATITUDE")
    hq_longitude: float = Field(default=-74.1454, alias="HQ_LONGITUDE")
    travel_minutes_per_mile: Decimal = Field(default=Decimal("2.5"), alias="TRAVEL_MINUTES_PER_MILE")
    postal_api_url: str = Field(default="https://api.zippopotam.us/us", alias="POSTAL_API_URL")
    postal_lookup_enabled: bool = Field(default=False, alias="POSTAL_LOOKUP_ENABLED")

    # External capacity service; when unset the in-database ledger is used.
    capacity_service_url: str | None = Field(default=None, alias="CAPACITY_SERVICE_URL")
    capacity_service_token: str | None = Field(default=None, alias="CAPACITY_SERVICE_TOKEN")

    # Quotes
    quote_valid_days: int = Field(default=7, alias="QUOTE_VALID_DAYS")
    quote_follow_up_days: int = Field(default=3, alias="QUOTE_FOLLOW_UP_DAYS")
    quote_reference_prefix: str = Field(default="QCS", alias="QUOTE_REFERENCE_PREFIX")

    company_name: str = Field(default="QCS Cargo", alias="COMPANY_NAME")
    company_tagline: str = Field(default="Precision Caribbean Air Cargo", alias="COMPANY_TAGLINE")
    company_address: str = Field(default="35 Obrien Street, Kearny, NJ 07032", alias="COMPANY_ADDRESS")
    company_phone: str = Field(default="201-249-0929", alias="COMPANY_PHONE")
    company_email: str = Field(default="quotes@qcscargo.com", alias="COMPANY_EMAIL")
    company_website: str = Field(default="https://www.qcscargo.com", alias="COMPANY_WEBSITE")

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allow_origins.split(",") if o.strip()] or ["*"]

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            parsed = urlparse(self.database_url)
            logger.info(
                "Database from DATABASE_URL: user=%s host=%s port=%s db=%s",
                parsed.username, parsed.hostname, parsed.port, parsed.path.lstrip("/"),
            )
            if not parsed.password:
                return self.database_url
            # passwords with @ or : break the URL unless quoted
            netloc = f"{parsed.username}:{quote_plus(parsed.password)}@{parsed.hostname}"
            if parsed.port:
                netloc += f":{parsed.port}"
            return urlunparse(parsed._replace(netloc=netloc))

        if not (self.pg_host and self.pg_user and self.pg_password and self.pg_db):
            raise RuntimeError("DATABASE_URL or PG* vars must be set")
        logger.info(
            "Database from PG* variables: user=%s host=%s port=%s db=%s",
            self.pg_user, self.pg_host, self.pg_port, self.pg_db,
        )
        return (
            f"postgresql+psycopg://{quote_plus(self.pg_user)}:{quote_plus(self.pg_password)}"
            f"@{self.pg_host}:{self.pg_port}/{self.pg_db}?sslmode=require"
        )


settings = Settings()
