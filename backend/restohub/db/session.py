import os
from contextlib import contextmanager
from typing import Any, Generator, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from restohub.core.config import settings
from restohub.core.errors import DomainError, InternalError
from restohub.core.logging_setup import logger

connect_args: dict[str, Any] = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False
elif settings.database_url.startswith("postgresql"):
    client_encoding = os.getenv("POSTGRES_CLIENT_ENCODING", "UTF8")
    connect_args["options"] = f"-c client_encoding={client_encoding}"

engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    connect_args=connect_args,
)


def init_db() -> None:
    import restohub.db.base  # noqa: F401

    SQLModel.metadata.create_all(bind=engine)


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@contextmanager
def atomic(session: Session, failure_message: str = "Operation failed") -> Iterator[Session]:
    """Run the enclosed block as a single transaction.

    Commits once when the block finishes, rolls back on any exception.
    Domain errors propagate unchanged; database errors are logged with full
    detail and surface as ``InternalError(failure_message)``.
    """
    try:
        yield session
        session.commit()
    except DomainError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("[atomic] %s: %s", failure_message, exc)
        raise InternalError(failure_message) from exc
    except Exception:
        session.rollback()
        raise
