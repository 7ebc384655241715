from sqlmodel import SQLModel, create_engine, Session
from .config import settings

# Registers the tables on SQLModel.metadata
from .infrastructure.persistence.sqlalchemy import models  # noqa: F401


def build_engine(db_url: str, timeout_seconds: float, echo: bool = False):
    engine_kwargs = {}
    if db_url.startswith("sqlite"):
        # sqlite3 waits up to `timeout` seconds on a locked database
        engine_kwargs.update({
            "connect_args": {"check_same_thread": False, "timeout": timeout_seconds}
        })
    else:
        timeout_ms = int(timeout_seconds * 1000)
        engine_kwargs.update({
            "connect_args": {"options": f"-c statement_timeout={timeout_ms}"},
            "pool_pre_ping": True,
            "pool_recycle": 300,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_timeout": timeout_seconds,
        })
    return create_engine(db_url, echo=echo, **engine_kwargs)


engine = build_engine(settings.DATABASE_URL, settings.STORAGE_TIMEOUT_SECONDS, echo=settings.DEBUG)


def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
