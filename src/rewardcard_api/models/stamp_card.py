"""Customer stamp cards."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from rewardcard_api.core.clock import parse_timestamp, utcnow
from rewardcard_api.db.base import Base
from rewardcard_api.models.business import BusinessTypeEnum


class StampCard(Base):
    """One customer's progress toward a reward at one business.

    Business name, type, logo, reward and total are copied from the business
    when the card is created and are not refreshed afterwards.
    """

    __tablename__ = "stamp_cards"
    __table_args__ = (
        # at most one open (non-redeemed) card per customer and business
        Index(
            "uq_stamp_cards_open_user_business",
            "user_id",
            "business_id",
            unique=True,
            sqlite_where=text("is_redeemed = 0"),
            postgresql_where=text("is_redeemed = false"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)

    business_name = Column(String, nullable=False)
    business_type = Column(
        SqlEnum(
            BusinessTypeEnum,
            name="business_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    logo_url = Column(String, nullable=True)
    reward = Column(String, nullable=False)
    color_class = Column(String, nullable=True)
    total_stamps = Column(Integer, nullable=False)

    current_stamps = Column(Integer, nullable=False, default=0, server_default="0")
    stamps_json = Column("stamps", JSON, nullable=False, default=list)
    is_completed = Column(Boolean, nullable=False, default=False, server_default="false")
    completed_at = Column(DateTime(timezone=True), nullable=True)
    is_redeemed = Column(Boolean, nullable=False, default=False, server_default="false")
    redeemed_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def stamps(self) -> list[dict[str, Any]]:
        return list(self.stamps_json or [])

    @property
    def last_stamped_at(self) -> datetime | None:
        stamps = self.stamps_json or []
        if not stamps:
            return None
        return parse_timestamp(stamps[-1].get("stamped_at"))

    def append_stamp(self, *, stamped_at: datetime, stamped_by: str) -> int:
        """Append a stamp record and return the new stamp count."""

        stamps = list(self.stamps_json or [])
        stamps.append({"stamped_at": stamped_at.isoformat(), "stamped_by": stamped_by})
        self.stamps_json = stamps
        self.current_stamps = len(stamps)
        if self.current_stamps == self.total_stamps:
            self.is_completed = True
            self.completed_at = stamped_at
        return self.current_stamps
