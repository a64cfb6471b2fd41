import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, select, text, update
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from therapy_scheduler.core import config
from therapy_scheduler.scheduling.intervals import is_grid_aligned, round_to_grid

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL or "sqlite:///./therapy_scheduler.db"

engine = create_engine(DATABASE_URL, echo=config.DATABASE_ECHO, pool_pre_ping=True)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_cache_schema_checked = False


def ensure_cache_schema() -> None:
    global _cache_schema_checked

    if _cache_schema_checked:
        return

    with _schema_lock:
        if _cache_schema_checked:
            return

        inspector = inspect(engine)

        if 'ai_response_cache' not in inspector.get_table_names():
            _cache_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_ai_cache_expires ON ai_response_cache(expires_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_ai_cache_created ON ai_response_cache(created_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_ai_cache_hash ON ai_response_cache(query_hash)')
            )

        _cache_schema_checked = True


def backfill_availability_grid(db: Session) -> int:
    """Round stored availability boundaries onto the 15-minute grid.

    Only meant for data migrations of legacy rows; new windows are rejected
    when they are not aligned. Returns the number of rows rewritten.
    """
    table = Base.metadata.tables.get('availability_windows')
    if table is None:
        return 0

    rows = db.execute(select(table.c.id, table.c.start_time, table.c.end_time)).all()
    changed = 0

    for window_id, start_time, end_time in rows:
        if is_grid_aligned(start_time) and is_grid_aligned(end_time):
            continue

        rounded_start = round_to_grid(start_time)
        rounded_end = round_to_grid(end_time)
        if rounded_end <= rounded_start:
            logger.warning(
                'Availability window %s collapses after rounding (%s-%s); left unchanged.',
                window_id,
                start_time,
                end_time,
            )
            continue

        db.execute(
            update(table)
            .where(table.c.id == window_id)
            .values(start_time=rounded_start, end_time=rounded_end)
        )
        changed += 1

    db.commit()
    if changed:
        logger.info('Backfilled %s availability windows onto the 15-minute grid.', changed)
    return changed


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
