"""
Transaction boundary used by every mutating service call.
"""
from contextlib import contextmanager
import logging

from fastapi import HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from app.common.errors import Aborted
from app.core.config import settings

logger = logging.getLogger(__name__)


def _is_postgres(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


# lock_not_available, query_canceled (statement timeout), deadlock_detected, serialization_failure
TRANSIENT_PGCODES = frozenset({"55P03", "57014", "40P01", "40001"})


def _is_transient(exc: DBAPIError) -> bool:
    return getattr(exc.orig, "pgcode", None) in TRANSIENT_PGCODES


@contextmanager
def transaction_scope(db: Session, operation: str = "operation"):
    """
    Run a unit of work in one transaction.

    Commits on success. Any failure rolls everything back: domain errors are
    re-raised as they are, database conflicts and timeouts (see
    ``TRANSIENT_PGCODES``) become ``Aborted``, and anything else becomes a 500.
    """
    try:
        if _is_postgres(db):
            db.execute(text(f"SET LOCAL lock_timeout = '{int(settings.LOCK_TIMEOUT_MS)}ms'"))
        yield db
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except DBAPIError as e:
        db.rollback()
        if _is_transient(e):
            logger.warning(f"{operation} aborted by the database: {e.orig}")
            raise Aborted(f"{operation} conflicted with a concurrent change or timed out; retry the request") from e
        logger.error(f"Database error during {operation}: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error during {operation}: {str(e)}"
        ) from e
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error during {operation}: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error during {operation}: {str(e)}"
        ) from e
