from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from typing import Generator
import os

# Local development runs on a SQLite file; deployments point DATABASE_URL at PostgreSQL.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data.db")

# Pool sizing for server databases. Booking confirmation takes a row lock on the
# property, so size the pool for peak concurrent writes plus open live sockets.
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_RECYCLE_SECONDS = int(os.getenv("DB_POOL_RECYCLE_SECONDS", "1800"))

if DATABASE_URL.startswith("sqlite"):
    # Sync route handlers and the live socket open sessions from different threads
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        pool_recycle=DB_POOL_RECYCLE_SECONDS,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator:
    """Request-scoped session; uncommitted work is rolled back when it closes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
