"""
Local store for cached Patient projections and the sync watermark.

All access to the ``cached_patients`` and ``sync_watermark`` tables goes
through this class. Each operation runs in its own short session, so an
upsert is visible to concurrent readers as soon as it commits.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Engine, and_, func, select, text
from sqlalchemy.exc import IntegrityError

from app.models.database import Base, build_session_factory
from app.models.patient import WATERMARK_ROW_ID, CachedPatient, SyncWatermark
from app.models.records import CachedRecord
from app.services.encryption import EncryptionService

logger = logging.getLogger(__name__)

# Name-like fields match case-insensitively on a substring, the rest exactly.
PARTIAL_MATCH_FIELDS = ("name", "given", "family", "phone")
EXACT_MATCH_FIELDS = ("id", "gender", "birth_date")
SORTABLE_FIELDS = PARTIAL_MATCH_FIELDS + EXACT_MATCH_FIELDS + ("last_updated",)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LocalStore:
    """Durable keyed table of CachedRecords plus the single watermark value."""

    def __init__(self, engine: Engine, encryption: EncryptionService | None = None):
        self.engine = engine
        self._session_factory = build_session_factory(engine)
        self._encryption = encryption or EncryptionService()

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> bool:
        try:
            with self._session_factory() as db:
                db.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.warning("Local store is unreachable", exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Row <-> record conversion
    # ------------------------------------------------------------------

    def _to_row(self, record: CachedRecord) -> CachedPatient:
        return CachedPatient(
            id=record.id,
            given=record.given,
            family=record.family,
            name=record.name,
            gender=record.gender,
            birth_date=record.birth_date,
            phone=record.phone,
            raw_resource=self._encryption.encrypt(record.raw_resource),
            last_updated=_as_utc(record.last_updated),
            synced_at=_as_utc(record.synced_at),
        )

    def _to_record(self, row: CachedPatient) -> CachedRecord:
        return CachedRecord(
            id=row.id,
            given=row.given,
            family=row.family,
            name=row.name,
            gender=row.gender,
            birth_date=row.birth_date,
            phone=row.phone,
            raw_resource=self._encryption.decrypt(row.raw_resource),
            last_updated=_as_utc(row.last_updated),
            synced_at=_as_utc(row.synced_at),
        )

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    def upsert(self, record: CachedRecord) -> None:
        """Insert or fully replace the row keyed by ``record.id``."""
        if not record.id:
            raise ValueError("Cannot cache a record without an identifier")

        for attempt in (1, 2):
            with self._session_factory() as db:
                db.merge(self._to_row(record))
                try:
                    db.commit()
                    return
                except IntegrityError:
                    # Race: a concurrent upsert inserted the same id first.
                    db.rollback()
                    if attempt == 2:
                        raise
                    logger.debug("Retrying upsert of Patient/%s after concurrent insert", record.id)

    def get(self, patient_id: str) -> CachedRecord | None:
        with self._session_factory() as db:
            row = db.get(CachedPatient, patient_id)
            return self._to_record(row) if row is not None else None

    def delete(self, patient_id: str) -> None:
        """Remove the row; absent rows are not an error."""
        with self._session_factory() as db:
            row = db.get(CachedPatient, patient_id)
            if row is None:
                return
            db.delete(row)
            db.commit()

    def count(self) -> int:
        with self._session_factory() as db:
            return db.scalar(select(func.count()).select_from(CachedPatient)) or 0

    @staticmethod
    def _column(field: str):
        if field not in SORTABLE_FIELDS:
            raise ValueError(f"Unknown field: {field}")
        return getattr(CachedPatient, field)

    def _condition(self, field: str, value: str):
        if field in PARTIAL_MATCH_FIELDS:
            column = self._column(field)
            return func.lower(column).contains(str(value).lower(), autoescape=True)
        if field in EXACT_MATCH_FIELDS:
            return self._column(field) == str(value)
        raise ValueError(f"Unsupported filter field: {field}")

    def query(
        self,
        filters: dict[str, str] | None = None,
        sort: list[tuple[str, str]] | None = None,
        offset: int = 0,
        limit: int = 25,
    ) -> tuple[list[CachedRecord], int]:
        """
        Filter, sort and paginate cached records.

        Returns the requested page and the total number of matching rows.
        Ties in the requested sort order are broken by id ascending.
        """
        conditions = [
            self._condition(field, value)
            for field, value in (filters or {}).items()
            if value not in (None, "")
        ]

        order_by = []
        for field, direction in sort or []:
            column = self._column(field)
            if direction == "desc":
                order_by.append(column.desc())
            elif direction == "asc":
                order_by.append(column.asc())
            else:
                raise ValueError(f"Unknown sort direction: {direction}")
        order_by.append(CachedPatient.id.asc())

        count_stmt = select(func.count()).select_from(CachedPatient)
        page_stmt = select(CachedPatient)
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
            page_stmt = page_stmt.where(and_(*conditions))
        page_stmt = page_stmt.order_by(*order_by).offset(max(offset, 0)).limit(max(limit, 0))

        with self._session_factory() as db:
            total = db.scalar(count_stmt) or 0
            rows = db.scalars(page_stmt).all()
            return [self._to_record(row) for row in rows], total

    # ------------------------------------------------------------------
    # Watermark
    # ------------------------------------------------------------------

    def get_watermark(self) -> datetime | None:
        with self._session_factory() as db:
            row = db.get(SyncWatermark, WATERMARK_ROW_ID)
            return _as_utc(row.cutoff) if row is not None else None

    def set_watermark(self, cutoff: datetime) -> datetime:
        """
        Store a new watermark and return the value in effect.

        The watermark never moves backwards: an earlier cutoff is ignored.
        """
        cutoff = _as_utc(cutoff)
        with self._session_factory() as db:
            row = db.get(SyncWatermark, WATERMARK_ROW_ID)
            if row is None:
                db.add(SyncWatermark(id=WATERMARK_ROW_ID, cutoff=cutoff))
            else:
                current = _as_utc(row.cutoff)
                if current is not None and cutoff < current:
                    logger.warning(
                        "Ignoring watermark %s earlier than stored %s",
                        cutoff.isoformat(),
                        current.isoformat(),
                    )
                    return current
                row.cutoff = cutoff
            db.commit()
        return cutoff
