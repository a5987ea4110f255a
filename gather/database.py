"""Database configuration, session management and the unit-of-work scope."""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from gather.config import Config

config = Config.from_env()

# Configure engine based on database type
if config.database_url.startswith("sqlite"):
    # SQLite-specific config
    engine = create_engine(
        config.database_url,
        connect_args={"check_same_thread": False},
        echo=config.sql_echo,
    )
else:
    # PostgreSQL config (production)
    engine = create_engine(
        config.database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
        echo=config.sql_echo,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for FastAPI endpoints to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Scope one atomic gate-check / mutate / repair / audit sequence.

    Commits when the block exits normally. Any exception rolls back every
    write made inside the block (no partial audit, no partial repair) and is
    re-raised to the caller.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
