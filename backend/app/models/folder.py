from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, BigInteger, Boolean, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base


class Folder(Base):
    """
    Folder model - the unit of access control.

    accessControl is stored as three JSON lists. They are always replaced
    wholesale (never appended to in place) so SQLAlchemy sees the change and
    the version column guards the write.
    """
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(String(500), nullable=False, default="")
    department = Column(String(50), nullable=False, index=True)
    is_public = Column(Boolean, nullable=False, default=False)
    # Owner never changes after creation
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    allowed_departments = Column(JSON, nullable=False, default=list)
    allowed_users = Column(JSON, nullable=False, default=list)
    denied_users = Column(JSON, nullable=False, default=list)

    # Advisory aggregates, never used for authorization
    file_count = Column(Integer, nullable=False, default=0)
    total_size = Column(BigInteger, nullable=False, default=0)
    last_modified = Column(DateTime(timezone=True), nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Integer, nullable=True)

    # Optimistic concurrency - every ORM UPDATE is conditioned on this value
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    files = relationship("File", back_populates="folder")

    __mapper_args__ = {"version_id_col": version}
