import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from storefront.models.database import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the engine (connection pool) and the session factory.

    Created once at process start and disposed at shutdown; handed to
    services explicitly instead of living in module globals.
    """

    def __init__(self, url: str, echo: bool = False):
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": 30}
        self.url = url
        self.engine = create_engine(url, echo=echo, connect_args=connect_args, pool_pre_ping=True)
        self.session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def close(self) -> None:
        logger.info("Disposing database connection pool")
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    """Database dependency for FastAPI"""
    db = request.app.state.database.session_factory()
    try:
        yield db
    finally:
        db.close()
