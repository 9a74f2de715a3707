"""SQLAlchemy ORM models.

All models are imported here so that Alembic can discover them
via ``Base.metadata`` when generating migrations.
"""

from kidsafe.models.approved_video import ApprovedVideo  # noqa: F401
from kidsafe.models.family import Family  # noqa: F401
from kidsafe.models.scheduled_video import CarryoverWatermark, ScheduledVideo  # noqa: F401
from kidsafe.models.user import RefreshToken, User  # noqa: F401

__all__ = [
    "ApprovedVideo",
    "CarryoverWatermark",
    "Family",
    "RefreshToken",
    "ScheduledVideo",
    "User",
]
