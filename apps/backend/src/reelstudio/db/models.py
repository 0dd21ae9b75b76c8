"""SQLAlchemy table definitions."""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class JobRow(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False)
    kind = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    external_ref = Column(String(255), nullable=False, default="")
    params = Column(JSON, nullable=False, default=dict)
    result = Column(JSON(none_as_null=True), nullable=True)
    error = Column(Text, nullable=True)
    poll_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_jobs_owner_kind_created", "owner_id", "kind", "created_at"),
        Index("idx_jobs_status", "status"),
    )
