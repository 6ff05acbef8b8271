from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from app.core.database import Base


class User(Base):
    """
    Directory record for an application user.

    Role and department are read fresh on every authorization decision;
    nothing about a user is cached on folders or files besides the id.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    # One of Role values: admin, manager, employee
    role = Column(String(20), nullable=False, default="employee")
    # One of Department values; may be null for users outside any department
    department = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
