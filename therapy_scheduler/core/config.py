import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

# Slot search
BUSINESS_DAY_START_HOUR = _get_int(os.getenv("BUSINESS_DAY_START_HOUR"), 8)
LAST_CANDIDATE_START_HOUR = _get_int(os.getenv("LAST_CANDIDATE_START_HOUR"), 17)
DAY_END_HOUR = _get_int(os.getenv("DAY_END_HOUR"), 18)
CANDIDATE_INCREMENT_MINUTES = _get_int(os.getenv("CANDIDATE_INCREMENT_MINUTES"), 30)
DEFAULT_SESSION_MINUTES = _get_int(os.getenv("DEFAULT_SESSION_MINUTES"), 60)
SLOT_SEARCH_DAYS = _get_int(os.getenv("SLOT_SEARCH_DAYS"), 7)
SLOT_SCORE_FLOOR = _get_float(os.getenv("SLOT_SCORE_FLOOR"), 0.3)
MAX_SCORED_SLOTS = _get_int(os.getenv("MAX_SCORED_SLOTS"), 10)

# Alternatives
ALTERNATIVE_TIME_MIN_SCORE = _get_float(os.getenv("ALTERNATIVE_TIME_MIN_SCORE"), 0.6)
MAX_ALTERNATIVES = _get_int(os.getenv("MAX_ALTERNATIVES"), 5)
THERAPIST_AVAILABILITY_SAMPLE = _get_int(os.getenv("THERAPIST_AVAILABILITY_SAMPLE"), 3)

# Workload
WORKLOAD_ANALYSIS_DAYS = _get_int(os.getenv("WORKLOAD_ANALYSIS_DAYS"), 30)
BASELINE_SESSION_HOURS = _get_float(os.getenv("BASELINE_SESSION_HOURS"), 1.0)
UNDERUTILIZATION_THRESHOLD = _get_float(os.getenv("UNDERUTILIZATION_THRESHOLD"), 70.0)
OVERLOAD_THRESHOLD = _get_float(os.getenv("OVERLOAD_THRESHOLD"), 120.0)
SHORT_SESSION_RATIO = _get_float(os.getenv("SHORT_SESSION_RATIO"), 0.8)

# Semantic cache
CACHE_TTL_SECONDS = _get_int(os.getenv("CACHE_TTL_SECONDS"), 3600)
CACHE_RETENTION_DAYS = _get_int(os.getenv("CACHE_RETENTION_DAYS"), 7)
CACHE_IDLE_DAYS = _get_int(os.getenv("CACHE_IDLE_DAYS"), 2)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and not DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set in production.")
