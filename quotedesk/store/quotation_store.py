from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from quotedesk.app.services.errors import DuplicateQuotationError

logger = logging.getLogger("quotedesk.store")

QUOTE_COUNTER_ID = "QUOTE_NUMBER_COUNTER"
DEFAULT_QUOTE_NUMBER_START = 107


class QuotationRecord(SQLModel, table=True):
    __tablename__ = "quotations"

    id: str = Field(primary_key=True)
    # NULL for manual quotations; unique otherwise so an email imports at most once.
    gmail_message_id: Optional[str] = Field(default=None, unique=True, index=True)
    created_at: str = Field(index=True)
    updated_at: str = Field(index=True)
    data: str


class CounterRecord(SQLModel, table=True):
    __tablename__ = "counters"

    id: str = Field(primary_key=True)
    value: int = Field(default=0)


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _ensure_sqlite_dir(url: str) -> None:
    if not url.startswith("sqlite:///"):
        return
    filename = url.replace("sqlite:///", "", 1)
    if filename and filename != ":memory:":
        Path(filename).parent.mkdir(parents=True, exist_ok=True)


def create_db_engine(db_url: str):
    _ensure_sqlite_dir(db_url)
    if db_url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(db_url, echo=False, **kwargs)
    return create_engine(db_url, echo=False)


def init_db(engine) -> None:
    SQLModel.metadata.create_all(engine)


def _record_to_quotation(record: QuotationRecord) -> Dict[str, Any]:
    try:
        data = json.loads(record.data or "{}")
    except ValueError:
        logger.warning("quotation %s has unreadable data column", record.id)
        data = {}
    if not isinstance(data, dict):
        data = {}
    data.setdefault("id", record.id)
    data.setdefault("createdAt", record.created_at)
    data.setdefault("updatedAt", record.updated_at)
    return data


class QuotationStore:
    """Persists quotation dicts as JSON documents keyed by ``id``."""

    def __init__(self, engine):
        self.engine = engine

    def init_db(self) -> None:
        init_db(self.engine)

    def _session(self) -> Session:
        return Session(self.engine)

    def save(self, quotation: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace a quotation; keeps ``createdAt`` and stamps ``updatedAt``."""
        if not quotation or quotation.get("id") in (None, ""):
            raise ValueError("Quotation with id is required")
        now = iso_now()
        stored = dict(quotation)
        stored["createdAt"] = stored.get("createdAt") or now
        stored["updatedAt"] = now
        key = str(stored["id"])
        gmail_id = str(stored.get("gmailMessageId") or "").strip() or None

        with self._session() as session:
            record = session.get(QuotationRecord, key)
            if record is None:
                record = QuotationRecord(id=key, created_at=stored["createdAt"], updated_at=now, data="")
            record.gmail_message_id = gmail_id
            record.created_at = stored["createdAt"]
            record.updated_at = now
            record.data = json.dumps(stored)
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateQuotationError(
                    "Already imported (duplicate)" if gmail_id else f"Duplicate quotation id {key}"
                ) from exc
        return stored

    def get(self, quotation_id: Any) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            record = session.get(QuotationRecord, str(quotation_id))
            return _record_to_quotation(record) if record else None

    def find_by_external_id(self, gmail_message_id: str) -> Optional[Dict[str, Any]]:
        if not gmail_message_id:
            return None
        with self._session() as session:
            record = session.exec(
                select(QuotationRecord).where(QuotationRecord.gmail_message_id == str(gmail_message_id))
            ).first()
            return _record_to_quotation(record) if record else None

    def list_all(self) -> List[Dict[str, Any]]:
        with self._session() as session:
            records = session.exec(select(QuotationRecord)).all()
            quotations = [_record_to_quotation(r) for r in records]
        epoch = datetime.fromtimestamp(0, tz=timezone.utc)
        quotations.sort(
            key=lambda q: parse_timestamp(q.get("updatedAt") or q.get("createdAt")) or epoch,
            reverse=True,
        )
        return quotations

    def delete_older_than(self, days: int, *, now: Optional[datetime] = None) -> Dict[str, int]:
        """Delete quotations whose last update is older than ``days``.

        Rows without a parseable timestamp are kept.
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        deleted = 0
        with self._session() as session:
            records = session.exec(select(QuotationRecord)).all()
            for record in records:
                data = _record_to_quotation(record)
                stamp = parse_timestamp(data.get("updatedAt") or data.get("createdAt"))
                if stamp is None or stamp >= cutoff:
                    continue
                session.delete(record)
                deleted += 1
            session.commit()
        logger.info("quotation cleanup scanned=%d deleted=%d cutoff=%s", len(records), deleted, cutoff.isoformat())
        return {"deleted": deleted, "scanned": len(records)}


class QuoteNumberAllocator:
    """Strictly increasing quote numbers backed by one counter row.

    The increment is a single ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING``
    statement, so concurrent processes never observe the same value. The
    in-process lock keeps SQLite writers from contending for the file lock.
    """

    def __init__(self, engine, start_value: int = DEFAULT_QUOTE_NUMBER_START, counter_id: str = QUOTE_COUNTER_ID):
        self.engine = engine
        self.start_value = int(start_value)
        self.counter_id = counter_id
        self._lock = threading.Lock()

    def _insert(self):
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            return sqlite_insert
        if dialect == "postgresql":
            return pg_insert
        raise RuntimeError(f"Atomic counter is not supported for database dialect '{dialect}'")

    def next(self) -> int:
        table = CounterRecord.__table__
        stmt = (
            self._insert()(table)
            .values(id=self.counter_id, value=self.start_value + 1)
            .on_conflict_do_update(index_elements=[table.c.id], set_={"value": table.c.value + 1})
            .returning(table.c.value)
        )
        with self._lock:
            with self.engine.begin() as conn:
                value = conn.execute(stmt).scalar_one()
        logger.info("allocated quote number %s", value)
        return int(value)

    def current(self) -> Optional[int]:
        with Session(self.engine) as session:
            record = session.get(CounterRecord, self.counter_id)
            return record.value if record else None
