from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from apps.api.app.core.config import settings


connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # The sweep worker pool opens sessions from several threads.
    connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
