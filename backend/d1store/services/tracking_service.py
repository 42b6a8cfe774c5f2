# Overview: Human-readable tracking identifiers for uniform requests.

"""
Tracking ID format: PREFIX-YYYYMMDD-S<staffId>-XXXX

The 4-character suffix is drawn from A-Z0-9 (36 symbols), so two requests by
the same staff member on the same day collide with probability 1/36^4 per
pair. Uniqueness is enforced by the database; callers retry with a freshly
generated id on collision (see uniform_request_service).
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime

from d1store.time_utils import utcnow


TRACKING_ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 4
DEFAULT_PREFIX = "D1"


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(length))


def generate_tracking_id(
    staff_id: int | str,
    *,
    now: datetime | None = None,
    prefix: str = DEFAULT_PREFIX,
) -> str:
    """Build a new tracking id. Every call draws a new random suffix."""
    day = (now or utcnow()).strftime("%Y%m%d")
    return f"{prefix}-{day}-S{staff_id}-{random_suffix()}"
