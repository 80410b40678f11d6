from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class KeyValueEntry(Base):
    """Client-local durable state: one row per (owner, key), value is serialized JSON."""
    __tablename__ = "kv_entries"

    owner = Column(String, primary_key=True)  # client id (anonymous browser id or user id)
    key = Column(String, primary_key=True)  # e.g. navicare_saved_providers
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
