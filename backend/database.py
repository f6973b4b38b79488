import logging
import os
import time
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", "postgresql://postgres@localhost:5432/esplendidez2026")


class DatabaseUnavailableError(RuntimeError):
    pass


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def wait_for_database(max_attempts: int = None, base_delay: float = None) -> None:
    """Block until the database answers ``SELECT 1``.

    Retries with exponential backoff and raises ``DatabaseUnavailableError``
    once ``max_attempts`` connections have failed.
    """
    if max_attempts is None:
        max_attempts = int(os.environ.get("DB_CONNECT_MAX_ATTEMPTS", 5))
    if base_delay is None:
        base_delay = float(os.environ.get("DB_CONNECT_BASE_DELAY", 1.0))

    last_error = None
    for attempt in range(1, max_attempts + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connected on attempt %s", attempt)
            return
        except Exception as exc:
            last_error = exc
            if attempt == max_attempts:
                break
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning("Database connection attempt %s/%s failed: %s; retrying in %.1fs", attempt, max_attempts, exc, delay)
            time.sleep(delay)

    logger.error("Database unreachable after %s attempts", max_attempts)
    raise DatabaseUnavailableError(f"Database unreachable after {max_attempts} attempts") from last_error


def check_database_health() -> dict:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "connected", "connected": True, "dialect": engine.dialect.name}
    except Exception as exc:
        logger.warning(f"Database health check failed: {exc}")
        return {"status": "error", "connected": False}
