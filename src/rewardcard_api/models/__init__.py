"""SQLAlchemy models package."""

from .business import (  # noqa: F401
    UNLIMITED,
    Business,
    BusinessTypeEnum,
    SubscriptionStatusEnum,
    SubscriptionTierEnum,
)
from .processor_event import (  # noqa: F401
    ProcessorEvent,
    ProcessorEventStatusEnum,
    ProcessorProviderEnum,
    claim_processor_event,
    mark_processed,
)
from .stamp_card import StampCard  # noqa: F401
from .transaction import Transaction, TransactionTypeEnum  # noqa: F401
from .user import User, UserTypeEnum  # noqa: F401
