# src/aircargo_portal/db.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from .settings import settings

logger = logging.getLogger(__name__)

_DRIVER_PREFIXES = ("postgresql+psycopg2://", "postgresql://", "postgres://")


def get_sqlalchemy_url() -> str:
    url = settings.sqlalchemy_url
    # engine runs on psycopg 3
    for prefix in _DRIVER_PREFIXES:
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def is_postgres(url: str) -> bool:
    return url.startswith("postgresql")


def build_engine(url: str):
    if not is_postgres(url):
        return create_engine(url)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=300,
        connect_args={
            "options": "-c statement_timeout=30000",
            # no server-side prepared statements on pooled connections
            "prepare_threshold": 0,
        },
    )


engine = build_engine(get_sqlalchemy_url())

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# (table, script) pairs, loaded in order; each only runs against an empty table.
_SEED_SCRIPTS = [
    ("destinations", "destinations.sql"),
    ("vehicles", "vehicles.sql"),
    ("postal_geos", "postal_geos.sql"),
]


def _script_statements(script: str) -> list[str]:
    chunks = (chunk.strip() for chunk in script.split(";"))
    return [c for c in chunks if c and c.upper() not in {"BEGIN", "COMMIT"}]


def _run_sql_script(bind, script_path: Path) -> None:
    statements = _script_statements(script_path.read_text())
    if statements:
        with bind.begin() as conn:
            for statement in statements:
                conn.exec_driver_sql(statement)


def default_seeds_root() -> Path:
    return Path(__file__).resolve().parent.parent.parent / "db" / "seeds"


def load_seed_data(bind=None, seeds_root: Path | None = None) -> list[str]:
    """Load seed scripts into empty tables; returns the tables that were seeded."""
    bind = bind if bind is not None else engine
    seeds_root = seeds_root or default_seeds_root()
    if not seeds_root.exists():
        return []

    loaded: list[str] = []
    for table_name, script_name in _SEED_SCRIPTS:
        script_path = seeds_root / script_name
        if not script_path.exists():
            continue
        with bind.connect() as conn:
            try:
                has_rows = conn.execute(text(f"SELECT 1 FROM {table_name} LIMIT 1")).first() is not None
            except Exception:
                logger.debug("Skipping seed load for %s; table unavailable.", table_name, exc_info=True)
                continue
        if has_rows:
            continue
        _run_sql_script(bind, script_path)
        loaded.append(table_name)
        logger.info("Loaded seed data for %s from %s", table_name, script_path.name)
    return loaded


def init_db(bind=None) -> None:
    # Safe if tables already exist
    from .models import Base

    bind = bind if bind is not None else engine
    Base.metadata.create_all(bind=bind)
    load_seed_data(bind)
