# Overview: Service-layer operations for request status; encapsulates business logic and database work.

"""
Uniform Request Status Lifecycle

================================================================================
STATE MACHINE:
    REQUEST -> DISPATCHED -> IN_TRANSIT -> ARRIVED -> COLLECTED
    REQUEST -> CANCELLED

    REQUEST:    Created; stock already decremented
    DISPATCHED: Picked and sent by dispatch
    IN_TRANSIT: With the carrier
    ARRIVED:    At the staff member's store
    COLLECTED:  Terminal. Handed to the staff member
    CANCELLED:  Terminal. Stock restored

RULES:
1. Forward moves go one step at a time, in order.
2. CANCELLED is only reachable from REQUEST. Cancelling restores the
   request's quantity to the stock item in the same transaction.
3. COLLECTED and CANCELLED are terminal.
4. Override: OVERRIDE_ROLES may force COLLECTED from any non-terminal state,
   for when dispatch status updates are missing.
5. Notes are editable in every state.
6. Re-order from COLLECTED creates a NEW request; the collected request is
   never modified.

WHO MAY DO WHAT is the ACTOR_TRANSITIONS table below. It only narrows the
legal graph; it can never add an edge can_transition() rejects.
================================================================================
"""

from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import StockItem, UniformRequest
from d1store.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .session_service import ROLE_ADMIN, ROLE_DISPATCH_ADMIN
from .uniform_request_service import RequestCreationResult, create_uniform_request


STATUS_REQUEST = "REQUEST"
STATUS_DISPATCHED = "DISPATCHED"
STATUS_IN_TRANSIT = "IN_TRANSIT"
STATUS_ARRIVED = "ARRIVED"
STATUS_COLLECTED = "COLLECTED"
STATUS_CANCELLED = "CANCELLED"

STATUS_ORDER = (
    STATUS_REQUEST,
    STATUS_DISPATCHED,
    STATUS_IN_TRANSIT,
    STATUS_ARRIVED,
    STATUS_COLLECTED,
)
VALID_STATUSES = set(STATUS_ORDER) | {STATUS_CANCELLED}
TERMINAL_STATUSES = {STATUS_COLLECTED, STATUS_CANCELLED}
CANCELLABLE_STATUSES = {STATUS_REQUEST}

# Staff-facing actions (cancel own request) are not tied to a login role.
ROLE_STAFF = "staff"

_FORWARD_STEPS = {
    (STATUS_ORDER[i], STATUS_ORDER[i + 1]) for i in range(len(STATUS_ORDER) - 1)
}
_CANCEL_STEPS = {(status, STATUS_CANCELLED) for status in CANCELLABLE_STATUSES}

# Policy table: actor role -> permitted (from, to) edges.
ACTOR_TRANSITIONS: dict[str, set[tuple[str, str]]] = {
    ROLE_STAFF: set(_CANCEL_STEPS),
    ROLE_ADMIN: set(_CANCEL_STEPS),
    ROLE_DISPATCH_ADMIN: _FORWARD_STEPS | _CANCEL_STEPS,
}

# Roles allowed to jump straight to COLLECTED.
OVERRIDE_ROLES = {ROLE_ADMIN, ROLE_DISPATCH_ADMIN}


class RequestStatusError(Exception):
    """Base for status lifecycle failures."""
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.details}


class RequestNotFoundError(RequestStatusError):
    status_code = 404


class StatusConflictError(RequestStatusError):
    """The request's current status does not allow the operation."""
    status_code = 409


class TransitionNotPermittedError(RequestStatusError):
    """The transition is legal, but not for this actor."""
    status_code = 403


class RequestOwnershipError(RequestStatusError):
    status_code = 403


class ReorderError(RequestStatusError):
    status_code = 400


def validate_status(status: str) -> None:
    """
    Raises:
        RequestStatusError: status is not a known request status
    """
    if status not in VALID_STATUSES:
        raise RequestStatusError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """True if (from_status, to_status) is an edge of the lifecycle graph."""
    validate_status(from_status)
    validate_status(to_status)
    return (from_status, to_status) in _FORWARD_STEPS | _CANCEL_STEPS


def next_status(status: str) -> str | None:
    """The next forward status, or None from a terminal state."""
    validate_status(status)
    if status in TERMINAL_STATUSES:
        return None
    return STATUS_ORDER[STATUS_ORDER.index(status) + 1]


def is_permitted(actor_role: str, from_status: str, to_status: str) -> bool:
    return (from_status, to_status) in ACTOR_TRANSITIONS.get(actor_role, set())


def available_actions(status: str, actor_role: str) -> list[str]:
    """
    Target statuses the actor may move a request to from status.

    Derived from the same table transitions are checked against, so "cancel"
    is only ever offered while the request is in REQUEST.
    """
    validate_status(status)
    targets = [
        to_status
        for (from_status, to_status) in ACTOR_TRANSITIONS.get(actor_role, set())
        if from_status == status and can_transition(from_status, to_status)
    ]
    if (
        actor_role in OVERRIDE_ROLES
        and status not in TERMINAL_STATUSES
        and STATUS_COLLECTED not in targets
    ):
        targets.append(STATUS_COLLECTED)
    order = list(STATUS_ORDER) + [STATUS_CANCELLED]
    return sorted(set(targets), key=order.index)


def _load_for_update(request_id: int) -> UniformRequest:
    request = (
        lock_for_update(db.session.query(UniformRequest).filter_by(id=request_id))
        .populate_existing()
        .first()
    )
    if request is None:
        raise RequestNotFoundError("Uniform request not found.", requestId=request_id)
    return request


def _move_status(request: UniformRequest, to_status: str) -> bool:
    """
    Move `request` to `to_status` only if it still holds the status it was
    read with. On a miss the instance is refreshed to the committed status
    and False is returned.
    """
    stmt = (
        update(UniformRequest)
        .where(UniformRequest.id == request.id, UniformRequest.status == request.status)
        .values(status=to_status, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount != 1:
        db.session.refresh(request)
        return False
    db.session.expire(request, ["status", "updated_at"])
    return True


def _restore_stock(request: UniformRequest) -> None:
    stmt = (
        update(StockItem)
        .where(StockItem.id == request.stock_item_id)
        .values(qty=StockItem.qty + request.quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        raise StatusConflictError(
            "Stock item for this request no longer exists; cannot restore stock.",
            currentStatus=request.status,
        )


def _not_cancellable(request: UniformRequest) -> StatusConflictError:
    return StatusConflictError(
        f'Only requests in REQUEST status can be cancelled. Current status: "{request.status}".',
        currentStatus=request.status,
    )


def cancel_request(
    request_id: int,
    *,
    actor_role: str = ROLE_STAFF,
    staff_id: int | None = None,
) -> UniformRequest:
    """
    Cancel a REQUEST-status request and restore its stock (REQUEST -> CANCELLED).

    staff_id, when given, must own the request (staff-facing path).

    Raises:
        RequestNotFoundError, RequestOwnershipError, StatusConflictError,
        TransitionNotPermittedError
    """
    def _op() -> UniformRequest:
        try:
            request = _load_for_update(request_id)
            if staff_id is not None and request.staff_id != staff_id:
                raise RequestOwnershipError(
                    "This request does not belong to the specified staff member."
                )
            if request.status not in CANCELLABLE_STATUSES:
                raise _not_cancellable(request)
            if not is_permitted(actor_role, request.status, STATUS_CANCELLED):
                raise TransitionNotPermittedError(
                    f"Role '{actor_role}' may not cancel requests.",
                    currentStatus=request.status,
                )

            if not _move_status(request, STATUS_CANCELLED):
                raise _not_cancellable(request)
            _restore_stock(request)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return request

    request = run_with_retry(_op)
    current_app.logger.info(
        "Cancelled uniform request %s; restored %s to stock item %s",
        request.tracking_id,
        request.quantity,
        request.stock_item_id,
    )
    return request


def transition_request(request_id: int, to_status: str, *, actor_role: str) -> UniformRequest:
    """
    Move a request along the lifecycle graph.

    Raises:
        RequestNotFoundError: unknown request
        StatusConflictError: edge is not in the lifecycle graph
        TransitionNotPermittedError: edge exists but the actor may not take it
    """
    validate_status(to_status)
    if to_status == STATUS_CANCELLED:
        return cancel_request(request_id, actor_role=actor_role)

    try:
        request = _load_for_update(request_id)
        current = request.status
        if not can_transition(current, to_status):
            raise StatusConflictError(
                f"Cannot move request {request_id} from '{current}' to '{to_status}'",
                currentStatus=current,
                requestedStatus=to_status,
            )
        if not is_permitted(actor_role, current, to_status):
            raise TransitionNotPermittedError(
                f"Role '{actor_role}' may not move requests from '{current}' to '{to_status}'",
                currentStatus=current,
                requestedStatus=to_status,
            )
        if not _move_status(request, to_status):
            raise StatusConflictError(
                f"Request {request_id} moved to '{request.status}' before it could be moved to '{to_status}'",
                currentStatus=request.status,
                requestedStatus=to_status,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return request


def advance_request(request_id: int, *, actor_role: str) -> UniformRequest:
    """Move a request one step forward."""
    request = db.session.get(UniformRequest, request_id)
    if request is None:
        raise RequestNotFoundError("Uniform request not found.", requestId=request_id)
    target = next_status(request.status)
    if target is None:
        raise StatusConflictError(
            f"Request {request_id} is already {request.status}",
            currentStatus=request.status,
        )
    return transition_request(request_id, target, actor_role=actor_role)


def force_collect(request_id: int, *, actor_role: str) -> UniformRequest:
    """
    Administrative override: mark a request COLLECTED regardless of its
    position in the dispatch pipeline.
    """
    if actor_role not in OVERRIDE_ROLES:
        raise TransitionNotPermittedError(f"Role '{actor_role}' may not mark requests collected")
    try:
        request = _load_for_update(request_id)
        if request.status in TERMINAL_STATUSES:
            raise StatusConflictError(
                f"Request {request_id} is already {request.status}",
                currentStatus=request.status,
            )
        previous = request.status
        if not _move_status(request, STATUS_COLLECTED):
            raise StatusConflictError(
                f"Request {request_id} moved to '{request.status}' before it could be collected",
                currentStatus=request.status,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.warning(
        "Request %s forced to COLLECTED from %s by %s", request.tracking_id, previous, actor_role
    )
    return request


def update_notes(request_id: int, notes: str | None) -> UniformRequest:
    request = db.session.get(UniformRequest, request_id)
    if request is None:
        raise RequestNotFoundError("Uniform request not found.", requestId=request_id)
    request.notes = notes.strip() if isinstance(notes, str) and notes.strip() else None
    request.updated_at = utcnow()
    db.session.commit()
    return request


def build_reorder_draft(request_id: int, reason: str | None) -> dict[str, Any]:
    """
    Seed a new request from a COLLECTED one. Does not write anything.

    Raises:
        RequestNotFoundError, StatusConflictError, ReorderError
    """
    request = db.session.get(UniformRequest, request_id)
    if request is None:
        raise RequestNotFoundError("Uniform request not found.", requestId=request_id)
    if request.status != STATUS_COLLECTED:
        raise StatusConflictError(
            "Only collected requests can be re-ordered.",
            currentStatus=request.status,
        )
    reason = (reason or "").strip()
    if not reason:
        raise ReorderError("A reason is required to re-order.")
    return {
        "staffId": request.staff_id,
        "ean": request.ean,
        "name": request.item_name,
        "quantity": request.quantity,
        "notes": f"Re-order of {request.tracking_id}: {reason}",
        "reorderOfId": request.id,
    }


def reorder_request(request_id: int, reason: str | None) -> RequestCreationResult:
    """Submit a re-order draft through the normal creation checks."""
    draft = build_reorder_draft(request_id, reason)
    return create_uniform_request(
        draft["staffId"],
        ean=draft["ean"],
        name=draft["name"],
        quantity=draft["quantity"],
        notes=draft["notes"],
        reorder_of_id=draft["reorderOfId"],
    )
