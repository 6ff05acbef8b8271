from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from app.core.database import Base


class ActivityLogEntry(Base):
    """
    Immutable audit record of an access-relevant action.

    file_name/folder_name are snapshots taken when the event happened so the
    entry still reads correctly after a rename or delete. There are no
    foreign keys: entries outlive the resources they describe.
    """
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(32), nullable=False)
    user_id = Column(Integer, nullable=False)
    file_id = Column(Integer, nullable=True, index=True)
    folder_id = Column(Integer, nullable=True)
    file_name = Column(String(255), nullable=True)
    folder_name = Column(String(100), nullable=True)
    target_user_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        Index("ix_activity_logs_user_ts", "user_id", "timestamp"),
        Index("ix_activity_logs_folder_ts", "folder_id", "timestamp"),
        Index("ix_activity_logs_action_ts", "action", "timestamp"),
    )
