from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(BASE_DIR, 'lessons.db')}")

Base = declarative_base()


def build_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, future=True, pool_pre_ping=True)
    options = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # every session has to see the same in-memory database
        options["poolclass"] = StaticPool
    return create_engine(url, future=True, **options)


def build_session_factory(url: str, create_schema: bool = True) -> sessionmaker:
    bound_engine = build_engine(url)
    if create_schema:
        import models  # noqa: F401

        Base.metadata.create_all(bound_engine)
    return sessionmaker(bind=bound_engine, expire_on_commit=False, autoflush=False)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


def get_session():
    return SessionLocal()


def init_db() -> None:
    import models  # noqa: F401

    Base.metadata.create_all(engine)
