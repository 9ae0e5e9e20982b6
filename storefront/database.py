# storefront/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
import os
from dotenv import load_dotenv

load_dotenv()

# 1. Read the URL from the environment or fall back to a local SQLite file
SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")

# 2. Hosted Postgres URLs use the legacy scheme, SQLAlchemy needs postgresql://
if SQLALCHEMY_DATABASE_URL and SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
    SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace("postgres://", "postgresql://", 1)


def engine_args(url: str) -> dict:
    # SQLite connections are shared with background tasks running on other threads
    if "sqlite" in url:
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(SQLALCHEMY_DATABASE_URL, **engine_args(SQLALCHEMY_DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Background work (fulfillment, notifications) opens its own sessions after the
# request session is closed; routes hand this factory to those tasks.
def get_session_factory():
    return SessionLocal


def init_db():
    # Import models so every table is registered on Base.metadata
    import storefront.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
