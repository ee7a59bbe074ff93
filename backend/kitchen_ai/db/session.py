"""Database session management"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from kitchen_ai.models.base import Base
from kitchen_ai.core.config import settings

# Create engine
if settings.DATABASE_URL.startswith("sqlite"):
    engine = create_engine(settings.DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_recycle=3600
    )

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database (create all tables)"""
    import kitchen_ai.models  # noqa: F401  registers every table on Base.metadata
    Base.metadata.create_all(bind=engine)
