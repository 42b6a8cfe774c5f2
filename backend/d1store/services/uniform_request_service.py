# Overview: Service-layer operations for uniform requests; encapsulates business logic and database work.

"""
Uniform Request Creation

================================================================================
PURPOSE: Create a uniform request without overselling stock or allowance
================================================================================

Every check and write happens inside ONE database transaction, in this order:

    1. staff exists                      -> StaffNotFoundError   (staff_not_found)
    2. quantity <= limit - already used  -> UniformLimitError    (uniform_limit_error)
    3. now >= last request + cooldown    -> CooldownError        (cooldown)
    4. conditional stock decrement       -> StockError           (stock_error)
    5. insert request (+ delivery)
    6. commit

The order matters: callers get the first rule that applies, and stock is
never touched when an earlier rule already rejects the request.

STOCK: the decrement is a single UPDATE ... WHERE qty >= :quantity. Two
concurrent requests cannot both pass it because the second one re-evaluates
the predicate against the committed quantity. No read-then-write.

ALLOWANCE: "used" is SUM(quantity) over the staff's non-CANCELLED requests.
The staff row is locked FOR UPDATE so concurrent requests by the same staff
member serialize on the allowance and cooldown checks.

TRACKING IDS: generated with a random suffix. A unique violation on the
tracking id column rolls the whole transaction back and it is re-run with a
fresh id, up to TRACKING_ID_MAX_ATTEMPTS times.

ALLOWANCE POLICY: uniform_limit is an administrative setting changed only
through staff_service.set_uniform_limit. Creating a request never modifies it.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Delivery, Staff, StockItem, UniformRequest
from ..models.requests import TRACKING_ID_CONSTRAINT
from ..validation import coerce_positive_int, require_text
from d1store.time_utils import as_utc_naive, cooldown_ends_at, to_utc_z, utcnow
from .concurrency import (
    RetryExhaustedError,
    claim_row,
    is_unique_violation,
    lock_for_update,
    retry_on_unique_violation,
)
from .tracking_service import generate_tracking_id


CANCELLED = "CANCELLED"
TRACKING_ID_COLUMNS = ("uniform_requests.tracking_id", "deliveries.tracking_id")
TRACKING_ID_CONSTRAINTS = (TRACKING_ID_CONSTRAINT, "uq_deliveries_tracking_id")


class UniformRequestError(Exception):
    """
    Base for request-creation outcomes that reject the request.

    kind is machine-readable; details carries kind-specific diagnostics.
    """
    kind = "uniform_request_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "kind": self.kind, **self.details}


class StaffNotFoundError(UniformRequestError):
    kind = "staff_not_found"
    status_code = 404


class UniformLimitError(UniformRequestError):
    kind = "uniform_limit_error"
    status_code = 409


class CooldownError(UniformRequestError):
    kind = "cooldown"
    status_code = 429


class StockError(UniformRequestError):
    kind = "stock_error"
    status_code = 409


class TrackingIdExhaustedError(UniformRequestError):
    kind = "tracking_id_error"
    status_code = 500


@dataclass
class RequestCreationResult:
    request: UniformRequest
    requested_quantity: int
    remaining_stock: int
    is_low_stock: bool

    def to_dict(self) -> dict[str, Any]:
        payload = self.request.to_dict()
        payload.update(
            {
                "requestedQuantity": self.requested_quantity,
                "remainingStock": self.remaining_stock,
                "isLowStock": self.is_low_stock,
            }
        )
        return payload


def _cooldown_hours() -> int:
    return current_app.config["UNIFORM_REQUEST_COOLDOWN_HOURS"]


def get_total_ordered(staff_id: int) -> int:
    """Sum of quantities across the staff member's non-cancelled requests."""
    total = (
        db.session.query(func.coalesce(func.sum(UniformRequest.quantity), 0))
        .filter(UniformRequest.staff_id == staff_id)
        .filter(UniformRequest.status != CANCELLED)
        .scalar()
    )
    return int(total or 0)


def get_latest_request(staff_id: int) -> UniformRequest | None:
    return (
        db.session.query(UniformRequest)
        .filter(UniformRequest.staff_id == staff_id)
        .order_by(UniformRequest.created_at.desc(), UniformRequest.id.desc())
        .first()
    )


def _check_allowance(staff: Staff, quantity: int) -> None:
    if staff.uniform_limit is None:
        return
    total_ordered = get_total_ordered(staff.id)
    remaining = staff.uniform_limit - total_ordered
    if quantity > remaining:
        raise UniformLimitError(
            f"Requested quantity exceeds staff uniform limit ({staff.uniform_limit}). "
            f"Already ordered: {total_ordered}.",
            uniformLimit=staff.uniform_limit,
            totalOrdered=total_ordered,
            remaining=max(0, remaining),
            requested=quantity,
        )


def _check_cooldown(staff: Staff, now: datetime) -> None:
    latest = get_latest_request(staff.id)
    if latest is None:
        return
    next_allowed_at = cooldown_ends_at(latest.created_at, _cooldown_hours())
    if now < next_allowed_at:
        raise CooldownError(
            "This staff member is currently in cooldown and cannot request yet.",
            cooldownHours=_cooldown_hours(),
            lastRequestedAt=to_utc_z(latest.created_at),
            nextAllowedAt=to_utc_z(next_allowed_at),
        )


def _decrement_stock(ean: str, name: str, quantity: int) -> StockItem:
    """Conditional decrement. Raises StockError when fewer than quantity are on hand."""
    stmt = (
        update(StockItem)
        .where(
            StockItem.ean == ean,
            StockItem.name == name,
            StockItem.qty >= quantity,
        )
        .values(qty=StockItem.qty - quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        available = (
            db.session.query(StockItem.qty)
            .filter(StockItem.ean == ean, StockItem.name == name)
            .scalar()
        )
        available = int(available or 0)
        raise StockError(
            f"Requested quantity exceeds available stock ({available}).",
            available=available,
            requested=quantity,
            ean=ean,
            name=name,
        )

    item = db.session.query(StockItem).filter(StockItem.ean == ean, StockItem.name == name).one()
    db.session.refresh(item)
    return item


def _is_tracking_collision(exc: BaseException) -> bool:
    return is_unique_violation(exc, constraints=TRACKING_ID_CONSTRAINTS, columns=TRACKING_ID_COLUMNS)


def create_uniform_request(
    staff_id: int,
    *,
    ean: Any,
    name: Any,
    quantity: Any,
    notes: str | None = None,
    now: datetime | None = None,
    reorder_of_id: int | None = None,
) -> RequestCreationResult:
    """
    Create a uniform request atomically.

    Raises:
        ValidationError: malformed input (before any database work)
        StaffNotFoundError, UniformLimitError, CooldownError, StockError:
            business-rule rejections; nothing is written
        TrackingIdExhaustedError: every generated tracking id collided
    """
    ean = require_text(ean, "ean")
    name = require_text(name, "name")
    quantity = coerce_positive_int(quantity, "quantity")
    notes = notes.strip() if isinstance(notes, str) and notes.strip() else None
    now = as_utc_naive(now)

    config = current_app.config
    prefix = config["TRACKING_ID_PREFIX"]

    def _op(tracking_id: str) -> RequestCreationResult:
        try:
            # Allowance and cooldown are read under this lock.
            if not claim_row(Staff.uniform_limit, staff_id):
                raise StaffNotFoundError("Staff member not found", staffId=staff_id)
            staff = (
                lock_for_update(db.session.query(Staff).filter_by(id=staff_id))
                .populate_existing()
                .one()
            )

            _check_allowance(staff, quantity)
            _check_cooldown(staff, now)
            item = _decrement_stock(ean, name, quantity)

            request = UniformRequest(
                staff_id=staff.id,
                stock_item_id=item.id,
                ean=item.ean,
                item_name=item.name,
                quantity=quantity,
                tracking_id=tracking_id,
                status="REQUEST",
                notes=notes,
                reorder_of_id=reorder_of_id,
                created_at=now,
                updated_at=now,
            )
            db.session.add(request)
            if config["CREATE_DELIVERY_RECORDS"]:
                db.session.add(
                    Delivery(
                        store_id=staff.store_id,
                        staff_id=staff.id,
                        tracking_id=tracking_id,
                        created_at=now,
                    )
                )
            db.session.flush()
            remaining = item.qty
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        return RequestCreationResult(
            request=request,
            requested_quantity=quantity,
            remaining_stock=remaining,
            is_low_stock=remaining <= config["LOW_STOCK_THRESHOLD"],
        )

    try:
        result = retry_on_unique_violation(
            _op,
            regenerate=lambda: generate_tracking_id(staff_id, now=now, prefix=prefix),
            is_collision=_is_tracking_collision,
            attempts=config["TRACKING_ID_MAX_ATTEMPTS"],
        )
    except RetryExhaustedError as exc:
        current_app.logger.error("Tracking id retries exhausted for staff %s", staff_id)
        raise TrackingIdExhaustedError(
            "Unable to generate unique tracking number",
            attempts=exc.attempts,
        ) from exc

    current_app.logger.info(
        "Created uniform request %s for staff %s (%s x %s, remaining %s)",
        result.request.tracking_id,
        staff_id,
        quantity,
        name,
        result.remaining_stock,
    )
    return result


def get_request_eligibility(staff_id: int, *, now: datetime | None = None) -> dict[str, Any]:
    """
    Pre-submission view of the cooldown and allowance for a staff member.

    Raises:
        StaffNotFoundError: unknown staff id
    """
    staff = db.session.get(Staff, staff_id)
    if staff is None:
        raise StaffNotFoundError("Staff member not found", staffId=staff_id)
    now = as_utc_naive(now)

    cooldown_hours = _cooldown_hours()
    aggregate = (
        db.session.query(
            func.coalesce(func.sum(UniformRequest.quantity), 0),
            func.count(UniformRequest.id),
        )
        .filter(UniformRequest.staff_id == staff_id)
        .filter(UniformRequest.status != CANCELLED)
        .one()
    )
    total_ordered = int(aggregate[0] or 0)
    total_requests = int(aggregate[1] or 0)
    remaining = (
        max(0, staff.uniform_limit - total_ordered)
        if staff.uniform_limit is not None
        else None
    )

    latest = get_latest_request(staff_id)
    if latest is None:
        can_request = True
        last_requested_at = None
        next_allowed_at = None
    else:
        next_allowed = cooldown_ends_at(latest.created_at, cooldown_hours)
        can_request = now >= next_allowed
        last_requested_at = to_utc_z(latest.created_at)
        next_allowed_at = None if can_request else to_utc_z(next_allowed)

    return {
        "canRequest": can_request,
        "cooldownHours": cooldown_hours,
        "lastRequestedAt": last_requested_at,
        "nextAllowedAt": next_allowed_at,
        "uniformLimit": staff.uniform_limit,
        "totalOrdered": total_ordered,
        "totalRequests": total_requests,
        "remaining": remaining,
    }


def list_requests_for_staff(staff_id: int) -> list[UniformRequest]:
    return (
        db.session.query(UniformRequest)
        .filter(UniformRequest.staff_id == staff_id)
        .order_by(UniformRequest.created_at.desc(), UniformRequest.id.desc())
        .all()
    )


def list_requests(*, status: str | None = None, limit: int = 500) -> list[UniformRequest]:
    query = db.session.query(UniformRequest)
    if status:
        query = query.filter(UniformRequest.status == status)
    return (
        query.order_by(UniformRequest.created_at.desc(), UniformRequest.id.desc())
        .limit(limit)
        .all()
    )


def get_request(request_id: int) -> UniformRequest | None:
    return db.session.get(UniformRequest, request_id)

