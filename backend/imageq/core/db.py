from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine
from sqlmodel.pool import StaticPool


def make_engine(database_url: str) -> Engine:
    """build an engine for the status store; in-memory sqlite shares one connection"""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def init_db(engine: Engine):
    """create tables if they don't exist"""
    # register table models on the metadata
    from imageq import models  # noqa: F401
    SQLModel.metadata.create_all(engine)
