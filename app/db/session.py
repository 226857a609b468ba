import logging
import time
from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.errors import TransientStoreError
from app.db.base import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the SQLAlchemy engine and session factory.

    Built once in the application lifespan and kept on ``app.state.database``;
    services receive sessions from it through ``get_db``.
    """

    def __init__(
        self,
        url: str = settings.DATABASE_URL,
        *,
        pool_timeout: float = settings.DB_TX_MAX_WAIT_SECONDS,
        engine: Engine | None = None,
    ):
        self.url = url
        self.engine = engine or self._create_engine(url, pool_timeout)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @staticmethod
    def _create_engine(url: str, pool_timeout: float) -> Engine:
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            return create_engine(url, **kwargs)
        # pool_timeout bounds how long a transaction waits for a connection
        return create_engine(
            url,
            pool_pre_ping=True,
            pool_recycle=3600,
            pool_timeout=pool_timeout,
            connect_args={"connect_timeout": 30},
        )

    def connect(self, create_tables: bool = False) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("Failed to connect to database: %s", exc)
            raise TransientStoreError("Database connection failed") from exc
        if create_tables:
            Base.metadata.create_all(bind=self.engine)
        logger.info("Database connected successfully")

    def health_check(self) -> dict:
        start = time.monotonic()
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("Database health check failed: %s", exc)
            raise TransientStoreError("Database health check failed") from exc
        latency_ms = int((time.monotonic() - start) * 1000)
        return {"status": "healthy", "latency_ms": latency_ms}

    def disconnect(self) -> None:
        self.engine.dispose()
        logger.info("Database disconnected successfully")

    def session(self) -> Session:
        return self.session_factory()


# do not change the order of the code below
# Dependency that can be used in routes to get the session
def get_db(request: Request) -> Generator[Session, None, None]:
    database: Database = request.app.state.database
    db = database.session()  # generate a new session
    try:
        yield db
    finally:
        db.close()
