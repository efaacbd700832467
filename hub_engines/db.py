"""
Database connection management.

Environment variables:
    - DATABASE_URL: SQLAlchemy connection URL (see config.py for the default)

Writers that guard a row (payment creation, coupon redemption, default
address reassignment, order creation, webhook reconciliation) run inside
``transaction()``, which commits on success and rolls back on any exception:

    with transaction(db):
        payment = db.query(Payment).filter(...).with_for_update().first()
        ...
"""

import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from .config import DATABASE_URL
from .models import Base

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    echo=False,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a SQLAlchemy Session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables on the configured engine."""
    Base.metadata.create_all(bind=engine)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a block as one unit of work on ``db``.

    Any pending work from before the block is flushed into the same
    transaction. The block's changes are committed when it exits normally;
    any exception rolls everything back and is re-raised.
    """
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back transaction")
        db.rollback()
        raise
