"""
User model — the minimal profile the matcher needs about a lender.

Only ``user_type`` is consulted: institutional lenders are ranked ahead
of individual lenders and pay the institution redelivery fee rate.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Enum as SAEnum, event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from lendmatch.database import Base


class UserType(str, enum.Enum):
    INDIVIDUAL = "Individual"
    INSTITUTION = "Institution"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    user_type: Mapped[UserType] = mapped_column(
        SAEnum(UserType, name="usertype", values_callable=lambda e: [m.value for m in e]),
        default=UserType.INDIVIDUAL,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_institution(self) -> bool:
        return self.user_type == UserType.INSTITUTION

    def __repr__(self) -> str:
        return f"<User {self.name} ({self.user_type.value if self.user_type else 'N/A'})>"


@event.listens_for(User, "init")
def _set_user_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "user_type" not in kwargs:
        target.user_type = UserType.INDIVIDUAL
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
