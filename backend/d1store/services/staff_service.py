# Overview: Service-layer operations for staff; encapsulates business logic and database work.

from __future__ import annotations

from typing import Any

from ..extensions import db
from ..models import Staff
from ..validation import coerce_optional_limit


class StaffError(ValueError):
    """Raised when staff operations fail."""


class StaffNotFound(StaffError):
    pass


def list_staff(*, role: str | None = None, store_id: int | None = None) -> list[Staff]:
    query = db.session.query(Staff)
    if role:
        query = query.filter(Staff.role == role.upper())
    if store_id is not None:
        query = query.filter(Staff.store_id == store_id)
    return query.order_by(Staff.display_name.asc(), Staff.id.asc()).all()


def get_staff(staff_id: int) -> Staff:
    staff = db.session.get(Staff, staff_id)
    if staff is None:
        raise StaffNotFound("Staff member not found")
    return staff


def set_uniform_limit(staff_id: int, uniform_limit: Any) -> Staff:
    """
    Set or clear (None) a staff member's uniform allowance.

    This is the only place the allowance changes. Lowering it below what the
    staff member has already ordered is allowed; it just blocks new requests.

    Raises:
        ValidationError: limit is not None or a positive integer
        StaffNotFound: unknown staff id
    """
    limit = coerce_optional_limit(uniform_limit)
    staff = get_staff(staff_id)
    staff.uniform_limit = limit
    db.session.commit()
    return staff
