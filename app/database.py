from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings

# The key-value namespace lives in PostgreSQL in production, SQLite elsewhere
DATABASE_URL = settings.database_url

if DATABASE_URL.startswith("postgresql"):
    engine = create_engine(DATABASE_URL, pool_pre_ping=True)
else:
    engine = create_engine(
        DATABASE_URL, connect_args={"check_same_thread": False}
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def init_db():
    """
    Creates the kv_entries table if needed.
    Called once from the application lifespan.
    """
    from app.models import kv_entry  # noqa: F401
    Base.metadata.create_all(bind=engine)

def check_database() -> None:
    """Round-trips a trivial query; raises if the database is unreachable."""
    with SessionLocal() as session:
        session.execute(text("SELECT 1"))
