"""
Activity ledger - append-only audit log of access-relevant events.

Two write modes:
- routine (strict=False): called after the primary action has committed.
  Failures are logged to the operational logger and swallowed; the user
  facing action is never failed or rolled back because of the audit write.
- strict (strict=True): used by access-control mutations. The entry is
  staged in the caller's transaction and any failure is raised as
  LedgerWriteFailure so the caller can roll the mutation back with it.

Entries are never updated or deleted.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.enums import ActivityAction
from app.core.exceptions import LedgerWriteFailure, ValidationError
from app.models.activity_log import ActivityLogEntry
from app.services.activity_details import validate_details

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityFilter:
    folder_id: Optional[int] = None
    file_id: Optional[int] = None
    user_id: Optional[int] = None
    action: Optional[ActivityAction] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None


class ActivityQuery:
    """
    Lazy, restartable view over matching entries, oldest first.

    Every iteration re-runs the query and streams rows in batches, so the
    result can be walked more than once and never has to fit in memory.
    """

    def __init__(self, db: Session, activity_filter: ActivityFilter, page_size: int):
        self.db = db
        self.filter = activity_filter
        self.page_size = page_size

    def _build(self):
        f = self.filter
        query = self.db.query(ActivityLogEntry)
        if f.folder_id is not None:
            query = query.filter(ActivityLogEntry.folder_id == f.folder_id)
        if f.file_id is not None:
            query = query.filter(ActivityLogEntry.file_id == f.file_id)
        if f.user_id is not None:
            query = query.filter(ActivityLogEntry.user_id == f.user_id)
        if f.action is not None:
            query = query.filter(ActivityLogEntry.action == ActivityAction(f.action).value)
        if f.since is not None:
            query = query.filter(ActivityLogEntry.timestamp >= f.since)
        if f.until is not None:
            query = query.filter(ActivityLogEntry.timestamp <= f.until)
        # id breaks ties between entries written within the same clock tick
        return query.order_by(ActivityLogEntry.timestamp.asc(), ActivityLogEntry.id.asc())

    def __iter__(self) -> Iterator[ActivityLogEntry]:
        return iter(self._build().yield_per(self.page_size))

    def page(self, offset: int = 0, limit: int = 100) -> List[ActivityLogEntry]:
        return self._build().offset(offset).limit(limit).all()

    def count(self) -> int:
        return self._build().order_by(None).count()


class ActivityLedger:
    def __init__(self, page_size: int = settings.ACTIVITY_QUERY_PAGE_SIZE):
        self.page_size = page_size
        self._lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

    def _next_timestamp(self) -> datetime:
        # Never hand out a timestamp earlier than the previous one, even if
        # the wall clock steps backwards
        with self._lock:
            now = datetime.now(timezone.utc)
            if self._last_timestamp is not None and now < self._last_timestamp:
                now = self._last_timestamp
            self._last_timestamp = now
            return now

    def _build_entry(
        self,
        action: ActivityAction,
        user_id: int,
        folder: Any = None,
        file: Any = None,
        target_user_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ActivityLogEntry:
        action = ActivityAction(action)
        if file is not None and folder is None:
            folder = file.folder
        return ActivityLogEntry(
            action=action.value,
            user_id=user_id,
            file_id=file.id if file is not None else None,
            file_name=file.name if file is not None else None,
            folder_id=folder.id if folder is not None else None,
            folder_name=folder.name if folder is not None else None,
            target_user_id=target_user_id,
            details=validate_details(action, details),
            timestamp=self._next_timestamp(),
        )

    def _write(self, db: Session, entry: ActivityLogEntry) -> None:
        db.add(entry)
        db.flush()

    def append(
        self,
        db: Session,
        action: ActivityAction,
        user_id: int,
        *,
        folder: Any = None,
        file: Any = None,
        target_user_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        strict: bool = False,
    ) -> Optional[ActivityLogEntry]:
        """
        Record an event.

        Routine appends commit on their own and must only be called after the
        primary change has been committed. Strict appends leave the commit to
        the caller.
        """
        if strict:
            entry = self._build_entry(action, user_id, folder, file, target_user_id, details)
            try:
                self._write(db, entry)
            except Exception as e:
                raise LedgerWriteFailure(f"Could not record '{entry.action}' entry: {e}") from e
            return entry

        try:
            entry = self._build_entry(action, user_id, folder, file, target_user_id, details)
            self._write(db, entry)
            db.commit()
            return entry
        except ValidationError as e:
            db.rollback()
            logger.error(f"Dropped malformed activity entry '{action}': {e.message}")
        except Exception:
            db.rollback()
            logger.exception(f"Activity log append failed for action '{action}' by user {user_id}")
        return None

    def query(self, db: Session, activity_filter: Optional[ActivityFilter] = None) -> ActivityQuery:
        return ActivityQuery(db, activity_filter or ActivityFilter(), self.page_size)


activity_ledger = ActivityLedger()
