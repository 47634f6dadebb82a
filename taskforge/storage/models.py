"""SQLAlchemy ORM models for task persistence."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TaskRecord(Base):
    """Persisted atomic task."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    epic_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    type: Mapped[str] = mapped_column(String(32), default="development")
    priority: Mapped[str] = mapped_column(String(16), default="medium")
    status: Mapped[str] = mapped_column(String(16), default="pending")
    estimated_hours: Mapped[float] = mapped_column(Float, default=0.0)
    acceptance_criteria: Mapped[list] = mapped_column(JSON, default=list)
    file_paths: Mapped[list] = mapped_column(JSON, default=list)
    dependencies: Mapped[list] = mapped_column(JSON, default=list)
    dependents: Mapped[list] = mapped_column(JSON, default=list)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_tasks_project", "project_id"),
        Index("idx_tasks_epic", "epic_id"),
    )

    def __repr__(self) -> str:
        return f"TaskRecord(id={self.id}, title={self.title}, status={self.status})"


class EpicRecord(Base):
    """Persisted epic."""

    __tablename__ = "epics"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    task_ids: Mapped[list] = mapped_column(JSON, default=list)
    dependencies: Mapped[list] = mapped_column(JSON, default=list)
    estimated_hours: Mapped[float] = mapped_column(Float, default=0.0)
    priority: Mapped[str] = mapped_column(String(16), default="medium")
    tags: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("idx_epics_project", "project_id"),)

    def __repr__(self) -> str:
        return f"EpicRecord(id={self.id}, title={self.title})"


class DependencyRecord(Base):
    """Persisted task-level dependency."""

    __tablename__ = "task_dependencies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    from_task_id: Mapped[str] = mapped_column(String(64), nullable=False)
    to_task_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(16), default="requires")
    critical: Mapped[bool] = mapped_column(Boolean, default=False)
    description: Mapped[str] = mapped_column(Text, default="")

    __table_args__ = (
        Index("idx_dependencies_from", "from_task_id"),
        Index("idx_dependencies_to", "to_task_id"),
    )

    def __repr__(self) -> str:
        return f"DependencyRecord({self.from_task_id} -> {self.to_task_id})"
