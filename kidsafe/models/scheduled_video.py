import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kidsafe.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduledVideo(Base):
    """One approved video made deliverable to one child on one day.

    ``is_active`` and ``is_watched`` only ever move from their initial
    value to the other one. ``original_date`` is copied unchanged into every
    carried-over descendant.
    """

    __tablename__ = "scheduled_videos"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    approved_video_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approved_videos.id", ondelete="CASCADE"), nullable=False,
    )
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    original_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_watched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    watched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    carried_over: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow,
    )

    # Relationships
    child: Mapped["User"] = relationship(foreign_keys=[child_id])  # noqa: F821
    approved_video: Mapped["ApprovedVideo"] = relationship(  # noqa: F821
        back_populates="schedules",
    )

    __table_args__ = (
        Index("ix_scheduled_videos_child_date", "child_id", "scheduled_date", "is_active"),
        Index("ix_scheduled_videos_sweep", "scheduled_date", "is_active", "is_watched"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledVideo(id={self.id}, date={self.scheduled_date}, "
            f"active={self.is_active}, watched={self.is_watched})>"
        )


class CarryoverWatermark(Base):
    """Last day closed out by carryover for a child.

    No active, unwatched schedule of the child is dated on or before
    ``closed_through``.
    """

    __tablename__ = "carryover_watermarks"

    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    )
    closed_through: Mapped[date] = mapped_column(Date, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<CarryoverWatermark(child_id={self.child_id}, closed_through={self.closed_through})>"
