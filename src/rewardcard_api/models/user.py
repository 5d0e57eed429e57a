from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from rewardcard_api.core.clock import utcnow
from rewardcard_api.db.base import Base


class UserTypeEnum(str, Enum):
    CUSTOMER = "customer"
    BUSINESS = "business"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)
    user_type = Column(String(length=16), nullable=False, default=UserTypeEnum.CUSTOMER.value, server_default=UserTypeEnum.CUSTOMER.value)
    member_id = Column(String(length=32), nullable=True, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
