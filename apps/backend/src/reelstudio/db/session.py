"""Engine and session factory."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from reelstudio.db.models import Base


def create_session_factory(database_url: str) -> sessionmaker:
    """Build a session factory for ``database_url`` and create missing tables.

    SQLite connections are shared across threads; an in-memory SQLite URL
    uses a single static connection so every session sees the same data.
    """
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine) -> None:
    Base.metadata.create_all(bind=engine)
