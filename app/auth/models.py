from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)

    # Printed on certificates; falls back to username
    full_name = Column(String, nullable=True)

    password_hash = Column(String, nullable=False)

    # "student" (default), "teacher", "coadmin", "admin"
    role = Column(String, default="student", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def display_name(self) -> str:
        return self.full_name or self.username
