# Database models for actors (staff users) and their permission grants
import json

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Enum as SQLAlchemyEnum
from sqlalchemy.sql import func

from credit_manager.database import Base

import enum


class RoleEnum(enum.Enum):
    ADMIN = "admin"
    UNDERWRITER = "underwriter"
    ANALYST = "analyst"
    VIEWER = "viewer"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=True)
    department = Column(String(100), nullable=True)

    role = Column(SQLAlchemyEnum(RoleEnum), nullable=False, default=RoleEnum.VIEWER)
    # JSON: [{"resource": "applications", "actions": ["read", "update"]}, ...]
    permissions_json = Column(Text, nullable=False, default="[]")

    is_active = Column(Boolean, default=True, nullable=False)
    login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def permissions(self) -> list:
        return json.loads(self.permissions_json or "[]")

    @permissions.setter
    def permissions(self, grants: list):
        self.permissions_json = json.dumps(grants)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.username
