import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from therapy_scheduler.core.errors import NotFoundError, SchedulingValidationError, StoreError
from therapy_scheduler.database import ensure_cache_schema

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_cache_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_clock() -> Callable[[], datetime]:
    return datetime.now


@contextmanager
def translate_errors():
    try:
        yield
    except SchedulingValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (StoreError, SQLAlchemyError) as exc:
        logger.error('Store failure while serving request: %s', exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
