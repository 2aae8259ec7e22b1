"""
Database connection and session.

Used by the "database" account store backend only. Schema source of truth:
app.models. On startup, Base.metadata.create_all(bind=engine) creates the
users and profiles tables when the database backend is selected.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import get_settings

settings = get_settings()
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
