"""Loyalty service exports."""

from .audit import AuditTrail  # noqa: F401
from .businesses import BusinessService, QuotaUsage, UsageSummary  # noqa: F401
from .card_lifecycle import CardLifecycleService, CardLookup  # noqa: F401
from .customers import CustomerService  # noqa: F401
from .errors import (  # noqa: F401
    AlreadyFinalizedError,
    CardFullError,
    ConcurrencyConflictError,
    CooldownError,
    CustomerLimitError,
    InvalidMemberIdError,
    MonthlyStampLimitError,
    NotFoundError,
    StampCardError,
)
from .scans import ScanOutcome, ScanService  # noqa: F401
from .stamp_ledger import StampLedgerService, StampResult  # noqa: F401
