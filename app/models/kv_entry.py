from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base

class KVEntry(Base):
    """One string value in a user's flat key-value namespace."""
    __tablename__ = "kv_entries"
    __table_args__ = (UniqueConstraint("namespace", "key", name="uq_kv_namespace_key"),)

    id = Column(Integer, primary_key=True, index=True)
    namespace = Column(String, index=True, nullable=False)
    key = Column(String, index=True, nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
