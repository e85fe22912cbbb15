# object_manager/core/database.py
"""Database configuration: engine, session factory and declarative base."""

import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from object_manager.manager import ObjectManager

load_dotenv()

DATABASE_URL = os.getenv("OBJECT_MANAGER_DATABASE_URL", "sqlite:///./object_manager.db")
SQL_ECHO = os.getenv("OBJECT_MANAGER_SQL_ECHO", "false").lower() in ("1", "true", "yes")

engine = create_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# ===== SESSION GENERATORS =====


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_object_manager():
    """Get an object manager over a new database session."""
    db = SessionLocal()
    try:
        yield ObjectManager(db)
    finally:
        db.close()


def init_db():
    """Create the tables of every model registered on Base."""
    Base.metadata.create_all(bind=engine)
