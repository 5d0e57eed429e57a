"""Typed outcomes for rejected scans and stamp attempts."""

from __future__ import annotations


class StampCardError(Exception):
    """Base class for stamp issuance failures surfaced to callers."""

    code = "stamp_card_error"
    upgrade_required = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(StampCardError):
    code = "not_found"

    def __init__(self, entity: str, identifier: object) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.identifier = identifier


class AlreadyFinalizedError(StampCardError):
    code = "already_finalized"

    def __init__(self) -> None:
        super().__init__("This card has already been completed or redeemed")


class CardFullError(StampCardError):
    code = "card_full"

    def __init__(self) -> None:
        super().__init__("Stamp card is already full")


class CooldownError(StampCardError):
    code = "cooldown"

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Please wait before adding another stamp to this card")
        self.retry_after_seconds = retry_after_seconds


class CustomerLimitError(StampCardError):
    code = "limit_customers"
    upgrade_required = True

    def __init__(self, limit: int) -> None:
        super().__init__("Customer limit reached for the current plan")
        self.limit = limit


class MonthlyStampLimitError(StampCardError):
    code = "limit_monthly_stamps"
    upgrade_required = True

    def __init__(self, limit: int) -> None:
        super().__init__("Monthly stamp limit reached for the current plan")
        self.limit = limit


class InvalidMemberIdError(StampCardError):
    code = "invalid_member_id"

    def __init__(self, member_id: str) -> None:
        super().__init__("Invalid member ID format")
        self.member_id = member_id


class ConcurrencyConflictError(StampCardError):
    code = "conflict"

    def __init__(self, attempts: int) -> None:
        super().__init__("The card was modified concurrently, please retry")
        self.attempts = attempts


__all__ = [
    "AlreadyFinalizedError",
    "CardFullError",
    "ConcurrencyConflictError",
    "CooldownError",
    "CustomerLimitError",
    "InvalidMemberIdError",
    "MonthlyStampLimitError",
    "NotFoundError",
    "StampCardError",
]
