"""SQLAlchemy database models for Taleweave.

Stories and account state are schemaless JSON documents addressed by
(collection, doc_id). Every write takes the next value of a store-wide
sequence so readers can order snapshots of the same document.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class RecordRow(Base):
    """One document in a collection."""

    __tablename__ = "records"

    id = Column(Integer, primary_key=True)
    collection = Column(String(255), nullable=False, index=True)  # e.g. "users/u1/stories"
    doc_id = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_records_collection_doc"),
    )


class WriteSequence(Base):
    """Single-row counter backing the per-write version token."""

    __tablename__ = "write_sequence"

    id = Column(Integer, primary_key=True)
    value = Column(Integer, nullable=False, default=0)
