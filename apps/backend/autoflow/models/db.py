from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from autoflow.config import settings

url = make_url(settings.DATABASE_URL)
engine_kwargs = {"pool_pre_ping": True}
if url.get_backend_name() == "sqlite":
    # Local runs and tests: one shared in-memory connection across threads
    engine_kwargs["connect_args"] = {"check_same_thread": False}
    if not url.database or url.database == ":memory:":
        engine_kwargs["poolclass"] = StaticPool
elif url.get_backend_name().startswith("postgresql"):
    engine_kwargs["connect_args"] = {"options": "-c timezone=utc"}

engine = create_engine(settings.DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
