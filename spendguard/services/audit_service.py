import json
import logging
import os
import time
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc
from sqlalchemy.exc import SQLAlchemyError
from spendguard.config import AuditConfig
from spendguard.core.database import SessionLocal
from spendguard.core.errors import AuditWriteError
from spendguard.models.audit_log import AuditLog
from spendguard.schemas.security import AuditAction, AuditResource

logger = logging.getLogger(__name__)

MAX_DETAIL_KEYS = 20
MAX_DETAIL_CHARS = 500


def compact_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep audit details small and JSON-safe."""
    compact: Dict[str, Any] = {}
    for key, value in list((details or {}).items())[:MAX_DETAIL_KEYS]:
        if value is None or isinstance(value, (bool, int, float)):
            compact[str(key)] = value
        else:
            compact[str(key)] = str(value)[:MAX_DETAIL_CHARS]
    return compact


class AuditService:
    """Append-only audit log; entries are never updated or deleted."""

    def __init__(self, db: Session = None, config: Optional[AuditConfig] = None):
        self.db = db or SessionLocal()
        self.config = config or AuditConfig()

    def append(self, owner_id: str, action: AuditAction, resource: AuditResource,
               resource_id: Optional[Any] = None, details: Optional[Dict[str, Any]] = None,
               timestamp: Optional[datetime] = None) -> AuditLog:
        """Write one entry, retrying transient store errors.

        Raises AuditWriteError once every attempt has failed.
        """
        attempts = max(1, self.config.append_attempts)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            entry = AuditLog(
                owner_id=owner_id,
                action=AuditAction(action).value,
                resource=AuditResource(resource).value,
                resource_id=str(resource_id) if resource_id is not None else None,
                timestamp=timestamp or datetime.utcnow(),
                details=compact_details(details),
            )
            try:
                self.db.add(entry)
                self.db.commit()
                self.db.refresh(entry)
                return entry
            except SQLAlchemyError as e:
                self.db.rollback()
                last_error = e
                logger.warning(f"Audit append attempt {attempt}/{attempts} failed for {action}: {e}")
                if attempt < attempts:
                    time.sleep(self.config.retry_delay_seconds * attempt)

        raise AuditWriteError(f"Could not write audit entry {action} for {owner_id}: {last_error}")

    def spool(self, owner_id: str, action: AuditAction, resource: AuditResource,
              resource_id: Optional[Any] = None, details: Optional[Dict[str, Any]] = None,
              timestamp: Optional[datetime] = None) -> None:
        """Park an entry that could not be written so it can be replayed later."""
        record = {
            "owner_id": owner_id,
            "action": AuditAction(action).value,
            "resource": AuditResource(resource).value,
            "resource_id": str(resource_id) if resource_id is not None else None,
            "timestamp": (timestamp or datetime.utcnow()).isoformat(),
            "details": compact_details(details),
        }
        with open(self.config.spool_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    def replay_spool(self) -> int:
        """Append every spooled entry. Entries that still fail stay in the spool."""
        path = self.config.spool_path
        if not os.path.exists(path):
            return 0

        with open(path, "r", encoding="utf-8") as f:
            records = [json.loads(line) for line in f if line.strip()]

        for index, record in enumerate(records):
            try:
                self.append(
                    record["owner_id"],
                    record["action"],
                    record["resource"],
                    resource_id=record.get("resource_id"),
                    details=record.get("details"),
                    timestamp=datetime.fromisoformat(record["timestamp"]),
                )
            except AuditWriteError:
                with open(path, "w", encoding="utf-8") as f:
                    for remaining in records[index:]:
                        f.write(json.dumps(remaining, ensure_ascii=False) + "\n")
                raise
        os.remove(path)
        return len(records)

    def record(self, owner_id: str, action: AuditAction, resource: AuditResource,
               resource_id: Optional[Any] = None, details: Optional[Dict[str, Any]] = None,
               timestamp: Optional[datetime] = None) -> Optional[AuditLog]:
        """Append, or spool and alert when the store keeps failing.

        Never raises; the action being audited has already happened.
        """
        try:
            return self.append(owner_id, action, resource, resource_id=resource_id,
                               details=details, timestamp=timestamp)
        except AuditWriteError as e:
            logger.critical(f"Audit entry lost for {AuditAction(action).value} on {resource_id}: {e}")
        try:
            self.spool(owner_id, action, resource, resource_id=resource_id,
                       details=details, timestamp=timestamp)
        except OSError as e:
            logger.critical(f"Could not spool audit entry for {resource_id}: {e}")
        return None

    def query(self, owner_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None,
              action: Optional[str] = None, limit: int = 100) -> List[AuditLog]:
        """Entries for an owner, newest first, optionally bounded in time."""
        filters = [AuditLog.owner_id == owner_id]
        if start is not None:
            filters.append(AuditLog.timestamp >= start)
        if end is not None:
            filters.append(AuditLog.timestamp <= end)
        if action:
            filters.append(AuditLog.action == action)

        return self.db.query(AuditLog).filter(and_(*filters)).order_by(
            desc(AuditLog.timestamp)
        ).limit(limit).all()
