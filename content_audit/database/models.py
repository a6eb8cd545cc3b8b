"""
Database models for the Content Audit Platform.
Uses SQLAlchemy ORM with support for SQLite (dev) and PostgreSQL (production).
"""

import datetime
import enum

from sqlalchemy import (
    create_engine, Column, Integer, String, Float, Boolean, Text,
    DateTime, JSON, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.sql import func

from content_audit.config.settings import DATABASE_URL

engine = create_engine(DATABASE_URL, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class ScoringState(str, enum.Enum):
    """Where a page sits in the guideline -> score chain."""

    AWAITING_GUIDELINE = "awaiting_guideline"
    READY = "ready"
    SCORED = "scored"


class ChangeStatus(str, enum.Enum):
    SUGGESTED = "suggested"
    APPLIED = "applied"
    REJECTED = "rejected"


# ============================================================
# Projects & pages
# ============================================================

class AuditProject(Base):
    __tablename__ = "audit_projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_domain = Column(String(500), nullable=False, unique=True)
    owner_id = Column(String(100), nullable=False)
    gsc_property = Column(String(1000))  # e.g. "sc-domain:example.com"
    primary_country = Column(String(10), default="us")
    language_code = Column(String(10), default="en")
    max_pages = Column(Integer, default=100)
    excluded_paths = Column(JSON, default=list)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    pages = relationship("AuditPage", back_populates="project", cascade="all, delete-orphan")


class AuditPage(Base):
    __tablename__ = "audit_pages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("audit_projects.id"), nullable=False)
    url = Column(String(1000), nullable=False)
    title = Column(String(500))
    meta_description = Column(String(1000))
    content = Column(Text)  # cached page text
    main_keyword = Column(String(500))

    # Search performance, current and previous 30-day windows
    clicks_30d = Column(Integer)
    impressions_30d = Column(Integer)
    ctr_30d = Column(Float)
    avg_position = Column(Float)
    prev_clicks_30d = Column(Integer)
    prev_impressions_30d = Column(Integer)

    content_score = Column(Integer)
    recommendation = Column(String(50))  # Performing Well, Monitor, Needs Optimization
    recommendation_score = Column(Integer)
    scoring_state = Column(String(32))  # ScoringState value

    lease_owner = Column(String(100))
    lease_expires_at = Column(DateTime)

    last_analysed_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    project = relationship("AuditProject", back_populates="pages")
    guidelines = relationship(
        "ContentGuidelines", back_populates="page", uselist=False, cascade="all, delete-orphan"
    )
    changes = relationship("AutoOptimizeChange", back_populates="page", cascade="all, delete-orphan")
    link_suggestions = relationship(
        "InternalLinkSuggestion", back_populates="page", cascade="all, delete-orphan"
    )
    alerts = relationship("Alert", back_populates="page", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("project_id", "url", name="uq_page_project_url"),
        Index("idx_page_recommendation_score", "recommendation_score"),
        Index("idx_page_last_analysed", "last_analysed_at"),
    )


# ============================================================
# Competitive benchmark
# ============================================================

class ContentGuidelines(Base):
    __tablename__ = "content_guidelines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    page_id = Column(Integer, ForeignKey("audit_pages.id"), nullable=False, unique=True)
    keyword = Column(String(500), nullable=False)
    language_code = Column(String(10), default="en")
    country = Column(String(10), default="us")
    min_words = Column(Integer)
    max_words = Column(Integer)
    avg_words = Column(Integer)
    avg_h1_count = Column(Integer)
    avg_h2_count = Column(Integer)
    avg_h3_count = Column(Integer)
    competitor_count = Column(Integer, default=0)
    is_fallback = Column(Boolean, default=False)
    important_terms = Column(JSON, default=list)  # ordered list of ImportantTerm dicts
    last_updated = Column(DateTime, default=func.now())
    created_at = Column(DateTime, default=func.now())

    page = relationship("AuditPage", back_populates="guidelines")


# ============================================================
# Suggestions
# ============================================================

class AutoOptimizeChange(Base):
    __tablename__ = "auto_optimize_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    page_id = Column(Integer, ForeignKey("audit_pages.id"), nullable=False)
    change_type = Column(String(20), nullable=False)  # insert, replace, delete
    location = Column(Text, nullable=False)  # JSON text, interpreted by the editor
    original_text = Column(Text)
    suggested_text = Column(Text, nullable=False)
    reasoning = Column(Text)
    status = Column(String(20), default=ChangeStatus.SUGGESTED.value)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    page = relationship("AuditPage", back_populates="changes")

    __table_args__ = (
        Index("idx_change_page_status", "page_id", "status"),
    )


class InternalLinkSuggestion(Base):
    __tablename__ = "internal_link_suggestions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    page_id = Column(Integer, ForeignKey("audit_pages.id"), nullable=False)
    source_url = Column(String(1000), nullable=False)
    target_url = Column(String(1000), nullable=False)
    anchor_text = Column(String(500))
    relevance_score = Column(Integer)
    mode = Column(String(20), default="basic")
    status = Column(String(20), default=ChangeStatus.SUGGESTED.value)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    page = relationship("AuditPage", back_populates="link_suggestions")

    __table_args__ = (
        Index("idx_link_page_status", "page_id", "status"),
    )


# ============================================================
# Alerts
# ============================================================

class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    page_id = Column(Integer, ForeignKey("audit_pages.id"))
    alert_type = Column(String(100), nullable=False)  # drop, rise, task_failure
    severity = Column(String(50), nullable=False)  # critical, warning, info
    title = Column(String(500))
    message = Column(Text)
    data = Column(JSON)
    is_read = Column(Boolean, default=False)
    is_resolved = Column(Boolean, default=False)
    resolved_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())

    page = relationship("AuditPage", back_populates="alerts")

    __table_args__ = (
        Index("idx_alert_type", "alert_type"),
        Index("idx_alert_page", "page_id"),
        Index("idx_alert_unread", "is_read"),
    )


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def init_db():
    """Initialize the database, creating all tables."""
    Base.metadata.create_all(bind=engine)
    return engine


if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    print("Database initialized successfully.")
