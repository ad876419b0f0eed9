from contextlib import contextmanager

from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from .config import settings
from .errors import ConflictError


engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    pool_recycle=3600,  # Recycle connections after 1 hour
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
)

# IMPORTANT: do not use scoped_session with async frameworks; create a fresh Session per request
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    # psycopg2 reports SQLSTATE 23505; sqlite only has the message
    if getattr(orig, "pgcode", None) == "23505":
        return True
    return "unique" in str(orig).lower()


@contextmanager
def transaction(db: Session, conflict_detail: str = "Conflicting record already exists"):
    """
    Commit every write made inside the block as one unit.

    A unique-index violation surfaces as ConflictError; any other failure,
    including foreign-key and not-null violations, rolls back and
    propagates unchanged.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if is_unique_violation(exc):
            raise ConflictError(conflict_detail) from exc
        raise
    except Exception:
        db.rollback()
        raise
