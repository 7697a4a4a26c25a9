"""
Tables of the local Patient cache.

- CachedPatient: one row per remote Patient, flattened search/sort columns
  next to the full FHIR payload
- SyncWatermark: singleton row holding the last completed sync cutoff
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from app.models.database import Base

WATERMARK_ROW_ID = 1


# ---------------------------------------------------------------------------
# CachedPatient – denormalized projection of a remote Patient resource
# ---------------------------------------------------------------------------
class CachedPatient(Base):
    __tablename__ = "cached_patients"

    id = Column(String(64), primary_key=True, comment="Remote FHIR resource id")

    # Flattened, queryable fields
    given = Column(String(255), nullable=False, default="")
    family = Column(String(255), nullable=False, default="")
    name = Column(String(512), nullable=False, default="", comment="Composite display name")
    gender = Column(String(16), nullable=False, default="")
    birth_date = Column(String(10), nullable=False, default="", comment="YYYY-MM-DD")
    phone = Column(String(64), nullable=False, default="")

    raw_resource = Column(Text, nullable=False, comment="Full FHIR JSON payload, optionally encrypted")
    last_updated = Column(DateTime(timezone=True), nullable=True, comment="Remote meta.lastUpdated")
    synced_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="When this local copy was written",
    )

    __table_args__ = (
        Index("ix_cached_patients_family", "family"),
        Index("ix_cached_patients_name", "name"),
        Index("ix_cached_patients_birth_date", "birth_date"),
        Index("ix_cached_patients_last_updated", "last_updated"),
    )


# ---------------------------------------------------------------------------
# SyncWatermark – single row, written once per successful sync cycle
# ---------------------------------------------------------------------------
class SyncWatermark(Base):
    __tablename__ = "sync_watermark"

    id = Column(Integer, primary_key=True, default=WATERMARK_ROW_ID)
    cutoff = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<SyncWatermark(cutoff={self.cutoff})>"
