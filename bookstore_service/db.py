from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .errors import StockGuardViolation
from .models import Base, STOCK_NON_NEGATIVE


def make_engine(database_uri, echo=False, isolation_level=None):
    kwargs = {"future": True, "echo": echo}
    if database_uri.startswith("sqlite"):
        # Flask serves requests from several threads
        kwargs["connect_args"] = {"check_same_thread": False}
    elif isolation_level:
        kwargs["isolation_level"] = isolation_level
    return create_engine(database_uri, **kwargs)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db(engine):
    Base.metadata.create_all(engine)


def is_stock_guard_error(exc):
    """
    True when an IntegrityError comes from the non-negative stock constraint.
    Engines that name the failed constraint are matched on the name, older
    ones on a CHECK failure that mentions the column.
    """
    text = str(getattr(exc, "orig", exc)).lower()
    if STOCK_NON_NEGATIVE in text:
        return True
    return "check constraint" in text and "quantity_in_stock" in text


@contextmanager
def transaction(session):
    """
    Commit the session when the block finishes, roll everything back otherwise.

    IntegrityErrors raised by the stock guard constraint are re-raised as
    StockGuardViolation so callers see a Forbidden error, not a driver error.
    """
    try:
        yield session
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if is_stock_guard_error(exc):
            raise StockGuardViolation() from exc
        raise
    except Exception:
        session.rollback()
        raise
