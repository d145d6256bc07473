# carebell/models/user.py
from __future__ import annotations

from sqlalchemy import Column, Integer, String, DateTime, func

from carebell.models.base import Base


class User(Base):
    """Recipient-side counters that outlive single reminders."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)

    # final non-done outcomes since the caregiver last looked
    missed_reminders = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
