from uuid import uuid4
from datetime import datetime

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from ..core.db import Base
from .project import Project


class Source(Base):
    """
    A URL watched on behalf of a project.

    Sources are soft-deleted (is_active=False) so ingestions keep their owner.
    """
    __tablename__ = "sources"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id"), index=True, nullable=False)
    url = Column(String(2048), nullable=False)
    display_name = Column(String(255), nullable=True)
    platform = Column(String(32), nullable=True)  # social | forum | syndication | news | generic
    is_active = Column(Boolean, nullable=False, default=True)
    last_fetch_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    project = relationship(Project)

    @property
    def label(self) -> str:
        return self.display_name or self.url
