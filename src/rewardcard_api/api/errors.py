"""Translate loyalty domain errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from rewardcard_api.services.loyalty.errors import (
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


_STATUS_BY_ERROR: tuple[tuple[type[StampCardError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadyFinalizedError, status.HTTP_409_CONFLICT),
    (CardFullError, status.HTTP_409_CONFLICT),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT),
    (CooldownError, status.HTTP_429_TOO_MANY_REQUESTS),
    (CustomerLimitError, status.HTTP_402_PAYMENT_REQUIRED),
    (MonthlyStampLimitError, status.HTTP_402_PAYMENT_REQUIRED),
    (InvalidMemberIdError, status.HTTP_400_BAD_REQUEST),
)


def stamp_error_to_http(error: StampCardError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            status_code = mapped
            break

    headers = None
    if isinstance(error, CooldownError):
        headers = {"Retry-After": str(error.retry_after_seconds)}

    return HTTPException(
        status_code=status_code,
        detail={
            "code": error.code,
            "message": error.message,
            "upgradeRequired": error.upgrade_required,
        },
        headers=headers,
    )


__all__ = ["stamp_error_to_http"]
