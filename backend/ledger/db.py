from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ledger import config


def _connect_args(url: str) -> dict:
    # FastAPI runs sync work on a thread pool; SQLite must allow cross-thread use.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    config.DATABASE_URL,
    future=True,
    echo=False,
    connect_args=_connect_args(config.DATABASE_URL),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


@contextmanager
def get_session() -> Iterator[Session]:
    """Yield a SQLAlchemy session that commits on success and rolls back on any error."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create all tables registered on ``Base``."""
    from ledger import models  # noqa: F401  - populate metadata

    Base.metadata.create_all(bind=engine)
