"""Database initialization utilities."""

from sqlalchemy.engine import Engine

from app import models  # noqa: F401
from app.db.base import Base
from app.db.session import engine as default_engine


def init_db(engine: Engine | None = None) -> None:
    """Create tables that do not exist yet."""
    Base.metadata.create_all(bind=engine or default_engine)
