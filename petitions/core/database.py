from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from petitions.core.config import settings

# Create SQLAlchemy engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,  # Verify connections before using them
    pool_size=10,
    max_overflow=20
)

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


def get_db():
    """
    Dependency function to get database session.
    Used in FastAPI endpoints with Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """
    Initialize database.

    Imports the models so they are registered on Base.metadata, then creates
    any missing tables. Petitions are owned by the moderation application;
    this service only needs their table to exist.
    """
    from petitions.models import petition, signature, rate_limit  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
