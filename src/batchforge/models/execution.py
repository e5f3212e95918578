"""Execution and ItemResult models for batch generation jobs."""
from datetime import datetime
from uuid import UUID, uuid4
from typing import Optional, Dict, Any, List
from sqlalchemy import (
    String,
    Integer,
    Boolean,
    CheckConstraint,
    UniqueConstraint,
    Index,
    Text,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from batchforge.core.database import Base
from batchforge.core.enums import ExecutionStatus, ItemStatus, FailureKind
from batchforge.models.base import TimestampMixin, JSONType, as_utc


class Execution(Base, TimestampMixin):
    """
    One submitted batch job.

    Created PENDING by the submitter, claimed and mutated only by the
    dispatcher that owns it, and made terminal exactly once.
    """

    __tablename__ = "executions"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # State Machine
    status: Mapped[ExecutionStatus] = mapped_column(
        SQLEnum(ExecutionStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ExecutionStatus.PENDING,
        index=True,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Original batch request: {"items": [{"prompt": ...}], "params": {...}}
    input: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Encrypted provider credential, cleared once the execution is terminal
    encrypted_credential: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)

    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Job-level failure summary
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    results: Mapped[List["ItemResult"]] = relationship(
        "ItemResult",
        back_populates="execution",
        order_by="ItemResult.index",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="check_progress_range"),
        CheckConstraint("total_items >= 0", name="check_total_items_non_negative"),
        CheckConstraint(
            "finished_at IS NULL OR started_at IS NULL OR finished_at >= started_at",
            name="check_finished_after_started",
        ),
        Index("idx_executions_status_created_at", "status", "created_at"),
    )

    @property
    def succeeded(self) -> int:
        """Number of items recorded as completed."""
        return sum(1 for r in self.results if r.status == ItemStatus.COMPLETED)

    @property
    def failed(self) -> int:
        """Number of items recorded as failed."""
        return sum(1 for r in self.results if r.status == ItemStatus.FAILED)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Wall time from start to finish, once terminal."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (as_utc(self.finished_at) - as_utc(self.started_at)).total_seconds()

    def __repr__(self) -> str:
        """Return string representation of Execution."""
        return f"<Execution(id={self.id}, status={self.status}, progress={self.progress})>"


class ItemResult(Base):
    """Recorded outcome of one batch item, keyed by (execution_id, index)."""

    __tablename__ = "item_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("executions.id", ondelete="CASCADE"), nullable=False
    )
    index: Mapped[int] = mapped_column("item_index", Integer, nullable=False)

    status: Mapped[ItemStatus] = mapped_column(
        SQLEnum(ItemStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    artifact_ref: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    media_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_kind: Mapped[Optional[FailureKind]] = mapped_column(
        SQLEnum(FailureKind, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    execution: Mapped[Execution] = relationship("Execution", back_populates="results")

    __table_args__ = (
        UniqueConstraint("execution_id", "item_index", name="uq_item_results_execution_index"),
        CheckConstraint("item_index >= 0", name="check_index_non_negative"),
        CheckConstraint("attempts >= 0", name="check_attempts_non_negative"),
    )

    def __repr__(self) -> str:
        """Return string representation of ItemResult."""
        return f"<ItemResult(execution_id={self.execution_id}, index={self.index}, status={self.status})>"
