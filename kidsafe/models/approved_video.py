import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kidsafe.database import Base


class ApprovedVideo(Base):
    """A video a guardian approved for one specific child.

    Owned by the approval workflow; the scheduler only reads it for
    ownership checks and display metadata.
    """

    __tablename__ = "approved_videos"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    youtube_id: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail: Mapped[str] = mapped_column(Text, nullable=False)
    channel_name: Mapped[str] = mapped_column(String(255), nullable=False)
    duration: Mapped[str | None] = mapped_column(String(20), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(),
    )

    # Relationships
    child: Mapped["User"] = relationship(back_populates="approved_videos")  # noqa: F821
    schedules: Mapped[list["ScheduledVideo"]] = relationship(  # noqa: F821
        back_populates="approved_video", cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("child_id", "youtube_id", name="uq_approved_video_child_youtube"),
    )

    def __repr__(self) -> str:
        return f"<ApprovedVideo(id={self.id}, title={self.title!r})>"
