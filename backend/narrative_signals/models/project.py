from uuid import uuid4
from datetime import datetime

from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, JSON, Uuid

from ..core.db import Base

# Refresh cadences the scheduler understands
ALLOWED_REFRESH_INTERVALS = (2, 4, 8, 12)
DEFAULT_REFRESH_INTERVAL_HOURS = 4


class Project(Base):
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    signal_instructions = Column(Text, nullable=True)  # free-text guidance for detection
    risk_criteria = Column(Text, nullable=True)
    settings = Column(JSON, nullable=True)  # per-project overrides (min_word_count, lock_minutes)
    refresh_interval_hours = Column(
        Integer, nullable=False, default=DEFAULT_REFRESH_INTERVAL_HOURS
    )
    last_refresh_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def setting(self, key: str, default=None):
        return (self.settings or {}).get(key, default)
