"""
SQLAlchemy models for communities, their application forms and member applications.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from member_import.db.session import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class Community(Base):
    __tablename__ = "communities"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    application_form = relationship("ApplicationForm", back_populates="community", uselist=False)


class ApplicationForm(Base):
    """Application form of a community; ``questions`` holds the ordered schema as JSON."""
    __tablename__ = "application_forms"

    id = Column(String(36), primary_key=True, default=_new_id)
    community_id = Column(String(36), ForeignKey("communities.id"), unique=True, nullable=False, index=True)
    title = Column(String(255), nullable=False, default="Application")
    questions = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    community = relationship("Community", back_populates="application_form")


class MemberApplication(Base):
    """
    One imported (or submitted) member.

    ``email`` is the identity value, stored lowercased. It is NULL when no
    identity could be resolved; such rows need one assigned by hand.
    """
    __tablename__ = "member_applications"
    __table_args__ = (
        UniqueConstraint("community_id", "email", name="uq_member_applications_community_email"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    form_id = Column(String(36), ForeignKey("application_forms.id"), nullable=False, index=True)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=False, index=True)
    email = Column(String(320), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    responses = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_utcnow)
