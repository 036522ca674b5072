"""Database configuration and connection setup"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from masterbook.config.settings import get_settings

settings = get_settings()

# Sessions run in UTC so timestamptz values and tstzrange bounds compare as instants
engine = create_engine(
    settings.DATABASE_URL,
    poolclass=QueuePool,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
    connect_args={"options": "-c timezone=utc"},
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database dependency for FastAPI and Celery tasks"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
