from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool, QueuePool

import logging
import os
import random
import time

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./database.db")

connect_args = {"check_same_thread": False}

# Execution option marking a session transaction that is about to write.
# On SQLite it is opened with BEGIN IMMEDIATE so racing writers queue on the
# database lock instead of reading the same snapshot.
WRITE_TRANSACTION = {"storefront_write": True}


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def create_store_engine(url: str):
    """Engine for the order/inventory store.

    In-memory SQLite shares one connection (StaticPool). File SQLite gets a
    connection per session, WAL journaling, and explicit BEGIN statements so
    write transactions can take the lock up front.
    """
    if not url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    if _is_memory_sqlite(url):
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=False)

    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True, echo=False)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        # SQLAlchemy emits BEGIN itself, see do_begin
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")  # Wait up to 5s for locks
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        if conn.get_execution_options().get("storefront_write"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


engine = create_store_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for getting database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Conflicts the store reports for concurrent read-modify-write on the same rows.
# IntegrityError covers two deliveries racing to record the same event id.
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def run_transaction(db, work, *args, max_attempts: int = 3, base_delay: float = 0.01):
    """Run `work(db, *args)` as one transaction and commit it.

    `work` must do all of its reads before its writes and must not commit.
    Optimistic concurrency conflicts (version mismatch) and lock timeouts roll
    the whole transaction back and run `work` again from scratch, with
    exponential backoff and jitter. Any other exception rolls back and
    propagates unchanged.
    """
    for attempt in range(max_attempts):
        try:
            if db.in_transaction():
                # close any open read so the write transaction starts fresh
                db.commit()
            db.connection(execution_options=WRITE_TRANSACTION)
            result = work(db, *args)
            db.commit()
            return result
        except RETRYABLE_ERRORS as e:
            db.rollback()
            if attempt < max_attempts - 1:
                delay = base_delay * (2 ** attempt) + random.uniform(0, base_delay)
                logger.warning(
                    "transaction conflict on attempt %d/%d (%s), retrying in %.3fs",
                    attempt + 1, max_attempts, type(e).__name__, delay,
                )
                time.sleep(delay)
                continue
            raise
        except Exception:
            db.rollback()
            raise
