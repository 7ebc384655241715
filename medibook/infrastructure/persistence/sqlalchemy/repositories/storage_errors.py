from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlmodel import Session

from .....application.ports.appointments_repo import StorageTimeout

# Driver messages for a busy SQLite file, a PostgreSQL statement_timeout or a connect timeout.
TIMEOUT_MARKERS = ("timeout", "timed out", "database is locked", "canceling statement")


def is_timeout(error: OperationalError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return any(marker in message for marker in TIMEOUT_MARKERS)


@contextmanager
def storage_timeouts(session: Session) -> Iterator[None]:
    """Roll back and raise StorageTimeout when the database did not answer in time."""
    try:
        yield
    except PoolTimeoutError as e:
        session.rollback()
        raise StorageTimeout(str(e))
    except OperationalError as e:
        session.rollback()
        if is_timeout(e):
            raise StorageTimeout(str(e.orig))
        raise


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without an offset; they were written as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
