import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from therapy_scheduler.core import config
from therapy_scheduler.database import Base, engine, ensure_cache_schema
from therapy_scheduler.models import availability, cache_cleanup_log, cache_entry, client, session, therapist  # noqa: F401
from therapy_scheduler.routes import cache_routes, scheduling_routes

config.validate_runtime_config()

app = FastAPI(title='Therapy Scheduling Intelligence')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_cache_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Scheduling Intelligence API Running'}


app.include_router(scheduling_routes.router, prefix='/scheduling')
app.include_router(cache_routes.router, prefix='/cache')
