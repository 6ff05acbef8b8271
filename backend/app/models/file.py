from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, BigInteger, Boolean, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base


class File(Base):
    """
    File model - metadata for an uploaded document inside a folder.

    The bytes live in the storage collaborator; path/public_id point at them.
    shared_with and versions are JSON lists replaced wholesale on change.
    """
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, index=True)
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    mimetype = Column(String, nullable=False, default="application/octet-stream")
    size = Column(BigInteger, nullable=False, default=0)
    path = Column(String, nullable=False)
    public_id = Column(String, nullable=True)

    # Provenance of the original upload
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False)
    # Who installed the current content when it is a later version
    revised_by = Column(Integer, nullable=True)
    revised_at = Column(DateTime(timezone=True), nullable=True)

    # [{user_id|department, access_type, shared_at, shared_by}]
    shared_with = Column(JSON, nullable=False, default=list)
    # [{version_number, storage_ref, size, mimetype, uploaded_by, uploaded_at}]
    versions = Column(JSON, nullable=False, default=list)

    downloads = Column(Integer, nullable=False, default=0)

    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    folder = relationship("Folder", back_populates="files")
    download_log = relationship(
        "FileDownload", order_by="FileDownload.id", back_populates="file")

    __mapper_args__ = {"version_id_col": version}


class FileDownload(Base):
    """
    Append-only download log row.

    Kept in its own table so concurrent downloads never contend for the
    file's version column.
    """
    __tablename__ = "file_downloads"

    id = Column(Integer, primary_key=True, index=True)
    file_id = Column(Integer, ForeignKey("files.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)
    downloaded_at = Column(DateTime(timezone=True), nullable=False)
    ip_address = Column(String(64), nullable=True)

    file = relationship("File", back_populates="download_log")
