from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from exambank.core.config import settings


class Base(DeclarativeBase):
    pass


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"future": True}
    return {"future": True, "pool_pre_ping": True, "pool_size": settings.DATABASE_POOL_SIZE, "max_overflow": settings.DATABASE_MAX_OVERFLOW}


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create tables if they don't exist. Production deployments use migrations."""
    import exambank.models.orm  # noqa: F401  registers the tables on Base.metadata
    Base.metadata.create_all(bind=bind or engine)
