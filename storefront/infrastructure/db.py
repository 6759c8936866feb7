from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from storefront.core_settings import get_settings
from storefront.domain.models import Base

settings = get_settings()

def build_engine(url: str) -> Engine:
    """Create an engine for ``url``; SQLite connections are shared across request threads."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=False, future=True, pool_pre_ping=True, connect_args=connect_args)

engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_models(bind: Engine = engine):
    Base.metadata.create_all(bind)
