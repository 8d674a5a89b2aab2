"""Scan history — a single SQLAlchemy table of scan runs.

``scans(id, status, created_at, updated_at, parameters, result)``

Status moves ``pending -> running -> completed | failed`` and nowhere
else; ``ScanHistory.transition`` rejects any other move with
``InvalidTransition``.  ``parameters`` and ``result`` are JSON text.

Usage:
    history = ScanHistory("sqlite:///azqr_history.db")
    scan_id = history.create({"key": "st"})
    history.transition(scan_id, ScanStatus.RUNNING)
    history.transition(scan_id, ScanStatus.COMPLETED, result={"recommendations": 12})
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import DateTime, String, Text, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

_log = logging.getLogger(__name__)


class ScanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# status -> statuses it may move to
TRANSITIONS: dict[ScanStatus, frozenset[ScanStatus]] = {
    ScanStatus.PENDING: frozenset({ScanStatus.RUNNING}),
    ScanStatus.RUNNING: frozenset({ScanStatus.COMPLETED, ScanStatus.FAILED}),
    ScanStatus.COMPLETED: frozenset(),
    ScanStatus.FAILED: frozenset(),
}


class InvalidTransition(ValueError):
    """A scan was asked to move to a status its current status does not allow."""


class ScanNotFound(KeyError):
    """No scan with the given id."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ScanRecord(Base):
    __tablename__ = "scans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status: Mapped[str] = mapped_column(String(20), default=ScanStatus.PENDING.value, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, nullable=False)
    parameters: Mapped[str] = mapped_column(Text, default="{}", nullable=False)
    result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "parameters": json.loads(self.parameters or "{}"),
            "result": json.loads(self.result) if self.result else None,
        }


class ScanHistory:
    """Thread-safe access to the ``scans`` table."""

    def __init__(self, url: str = "sqlite:///azqr_history.db"):
        kwargs: dict[str, Any] = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        Base.metadata.create_all(self.engine)
        self._session = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._lock = threading.Lock()

    def create(self, parameters: dict[str, Any]) -> str:
        record = ScanRecord(parameters=json.dumps(parameters, sort_keys=True))
        with self._lock, self._session() as session:
            session.add(record)
            session.commit()
            _log.info("Scan %s created", record.id)
            return record.id

    def get(self, scan_id: str) -> dict[str, Any]:
        with self._session() as session:
            record = session.get(ScanRecord, scan_id)
            if record is None:
                raise ScanNotFound(scan_id)
            return record.as_dict()

    def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._session() as session:
            stmt = select(ScanRecord).order_by(ScanRecord.created_at.desc()).limit(limit)
            return [r.as_dict() for r in session.scalars(stmt)]

    def transition(self, scan_id: str, status: ScanStatus,
                   result: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Move *scan_id* to *status*, storing *result* when given."""
        with self._lock, self._session() as session:
            record = session.get(ScanRecord, scan_id)
            if record is None:
                raise ScanNotFound(scan_id)
            current = ScanStatus(record.status)
            if status not in TRANSITIONS[current]:
                raise InvalidTransition(f"scan {scan_id}: {current.value} -> {status.value}")
            record.status = status.value
            record.updated_at = _now()
            if result is not None:
                record.result = json.dumps(result, sort_keys=True, default=str)
            session.commit()
            _log.info("Scan %s %s -> %s", scan_id, current.value, status.value)
            return record.as_dict()
