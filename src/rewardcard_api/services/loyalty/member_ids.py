"""Customer member identifiers encoded in the scannable QR code."""

from __future__ import annotations

import re
import secrets
from datetime import datetime

from rewardcard_api.core.clock import utcnow
from rewardcard_api.core.settings import settings
from rewardcard_api.services.loyalty.errors import InvalidMemberIdError


MEMBER_ID_PATTERN = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<year>\d{4})-(?P<number>\d{6})$")


def is_valid_member_id(member_id: str) -> bool:
    match = MEMBER_ID_PATTERN.match(member_id or "")
    return bool(match) and match.group("prefix") == settings.member_id_prefix


def validate_member_id(member_id: str) -> str:
    """Return the normalized member id or raise ``InvalidMemberIdError``."""

    candidate = (member_id or "").strip()
    if not is_valid_member_id(candidate):
        raise InvalidMemberIdError(member_id)
    return candidate


def generate_member_id(now: datetime | None = None) -> str:
    year = (now or utcnow()).year
    number = 100000 + secrets.randbelow(900000)
    return f"{settings.member_id_prefix}-{year}-{number}"
