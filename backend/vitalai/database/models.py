"""Database models for document verification and the tuning key-value store."""
from sqlalchemy import Column, String, Text, DateTime, Integer, JSON, Index
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class DocumentVerification(Base):
    """One block of the document chain.

    Rows are ordered by ``id``; ``previous_hash`` points at the ``block_hash``
    of the row inserted before it, or "0" for the first row. Re-uploading a
    name appends a new row; the latest row per owner and name is current.
    """
    __tablename__ = "document_verifications"
    __table_args__ = (
        Index("ix_document_verifications_owner_name", "owner", "document_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_name = Column(String(255), index=True, nullable=False)
    document_hash = Column(String(64), nullable=False)
    block_hash = Column(String(64), unique=True, nullable=False)
    previous_hash = Column(String(64), index=True, nullable=False)
    verification_data = Column(JSON, nullable=False)
    owner = Column(String(255), index=True, nullable=False)
    content_type = Column(String(255), nullable=True)
    size = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<DocumentVerification(id={self.id}, document_name={self.document_name}, owner={self.owner}, block_hash={self.block_hash[:12]})>"


class KeyValueEntry(Base):
    """String key-value pairs backing the tuner's local persistence."""
    __tablename__ = "kv_store"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
