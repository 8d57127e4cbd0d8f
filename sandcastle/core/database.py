from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from sandcastle.core.config import Settings

# -----------------------------------------------------
# Base Model
# -----------------------------------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------------------------------
# Database Engine + Session
# -----------------------------------------------------
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def init_engine(settings: Settings):
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQL_ECHO
    )
    SessionLocal.configure(bind=engine)
    return engine


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
