import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from results import PersistenceFailure

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if ":memory:" in database_url or database_url.endswith("://"):
            # one shared connection, otherwise every thread sees an empty db
            engine_kwargs["poolclass"] = StaticPool

    eng = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


class Base(DeclarativeBase):
    pass


class Database:
    """Owns the engine and session factory for one process.

    Created by the entry point (or a test) and handed to whatever needs
    sessions; nothing in the service layer reaches for a global handle.
    """

    def __init__(self, database_url: str, engine: Optional[Engine] = None) -> None:
        self.database_url = database_url
        self.engine = engine or create_db_engine(database_url)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        import models  # noqa: F401  registers the tables on Base.metadata

        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session: Session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run a unit of writes on ``session`` and commit them together.

    Anything raised inside the block rolls the whole unit back. Store
    errors are re-raised as ``PersistenceFailure``; everything else
    propagates unchanged.
    """
    try:
        yield session
        session.flush()
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("atomic apply failed, rolled back", exc_info=True)
        raise PersistenceFailure("Could not save changes") from exc
    except Exception:
        session.rollback()
        raise
